from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError

from mbti_assess import models  # noqa: F401  (registers tables on Base)
from mbti_assess.config import settings
from mbti_assess.database import Base, engine
from mbti_assess.dependencies import Services, get_services, shutdown_services
from mbti_assess.errors import PhaseViolation, SessionExpired, SessionNotFound
from mbti_assess.routers import assessment as assessment_router, progress as progress_router, session as session_router
from mbti_assess.routers.common import fail, ok
from mbti_assess.utils.log import clear_context, get_logger, setup_logging
from mbti_assess.utils.timing import utcnow

setup_logging(settings.log_level, settings.log_json)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Pending autosaves are written and timers cancelled before exit
    shutdown_services()


app = FastAPI(title="MBTI Assessment Service", version=settings.version, lifespan=lifespan)
Base.metadata.create_all(bind=engine)

app.include_router(assessment_router.router)
app.include_router(progress_router.router)
app.include_router(session_router.router)


# --------------------- Error mapping ---------------------

@app.middleware("http")
async def reset_log_context(request: Request, call_next):
    clear_context()
    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def malformed_request(request: Request, exc: RequestValidationError):
    return fail(400, "Malformed request", data={"errors": [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"], "code": "INVALID_REQUEST"}
        for err in exc.errors()
    ]})


@app.exception_handler(SessionNotFound)
async def session_not_found(request: Request, exc: SessionNotFound):
    return fail(404, str(exc))


@app.exception_handler(SessionExpired)
async def session_expired(request: Request, exc: SessionExpired):
    return fail(410, str(exc))


@app.exception_handler(PhaseViolation)
async def phase_violation(request: Request, exc: PhaseViolation):
    return fail(409, str(exc))


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return fail(500, "Internal server error")


# --------------------- Health ---------------------

@app.get("/health")
def health():
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat() + "Z",
        "environment": settings.environment,
        "version": settings.version,
    }


@app.get("/health/storage")
def storage_health(services: Services = Depends(get_services)):
    return ok(services.sais_storage.check_health())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("mbti_assess.main:app", host="127.0.0.1", port=8000, reload=True)
