import dataclasses
import os

# Before the package is imported: keep the module-level engine off the real database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mbti_assess import models  # noqa: F401
from mbti_assess.config import settings
from mbti_assess.database import Base
from mbti_assess.dependencies import build_services, get_services
from mbti_assess.utils.storage import MemoryBackend
from mbti_assess.utils.timing import VirtualClock, VirtualScheduler


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def scheduler(clock):
    return VirtualScheduler(clock)


@pytest.fixture
def test_settings():
    return dataclasses.replace(settings, interim_api_enabled=True, scoring_cache_ttl_seconds=300)


@pytest.fixture
def services(session_factory, test_settings, clock, scheduler):
    return build_services(
        session_factory,
        settings=test_settings,
        clock=clock,
        scheduler=scheduler,
        backends=[MemoryBackend(name="primary"), MemoryBackend(name="fallback")],
    )


@pytest.fixture
def client(services):
    from mbti_assess.main import app

    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


# --------------------- Response builders ---------------------

def binary(qid, dimension, option, session_id="s-1", question_type="core", **extra):
    return {
        "questionId": str(qid),
        "sessionId": session_id,
        "mbtiDimension": dimension,
        "questionType": question_type,
        "responseType": "binary",
        "selectedOption": option,
        **extra,
    }


def distribution(qid, dimension, a, b, session_id="s-1", question_type="extended", **extra):
    return {
        "questionId": str(qid),
        "sessionId": session_id,
        "mbtiDimension": dimension,
        "questionType": question_type,
        "responseType": "distribution",
        "distributionA": a,
        "distributionB": b,
        **extra,
    }


@pytest.fixture
def core_responses():
    return [
        binary("c1", "E/I", "A"),
        binary("c2", "S/N", "B"),
        binary("c3", "T/F", "A"),
        binary("c4", "J/P", "B"),
    ]


@pytest.fixture
def esfj_sais_responses():
    splits = {
        "E/I": [(4, 1), (3, 2), (5, 0)],
        "S/N": [(4, 1), (5, 0), (4, 1)],
        "T/F": [(2, 3), (1, 4), (0, 5)],
        "J/P": [(4, 1), (5, 0), (4, 1)],
    }
    out = []
    n = 0
    for dimension, pairs in splits.items():
        for a, b in pairs:
            n += 1
            out.append(distribution(100 + n, dimension, a, b))
    return out
