from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from mbti_assess.config import settings

Base = declarative_base()

# Local SQLite needs the same-thread check disabled for FastAPI's threadpool
if settings.database_url.startswith("sqlite"):
    engine = create_engine(settings.database_url, connect_args={"check_same_thread": False})
else:
    engine = create_engine(settings.database_url, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
