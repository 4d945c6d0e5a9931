"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from prometheus_fastapi_instrumentator import Instrumentator

from neo_edu.api.admin import router as admin_router
from neo_edu.api.auth import router as auth_router
from neo_edu.api.exams import router as exams_router
from neo_edu.core.config import Settings, get_settings
from neo_edu.core.database import get_engine, init_db
from neo_edu.core.errors import ExamServiceError

logger = logging.getLogger(__name__)


def _error(status_code: int, message, kind: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": kind, "status_code": status_code, **extra}},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.APP_NAME}...")
        if not settings.is_production():
            init_db(get_engine())
        yield
        logger.info("Shutting down...")
        get_engine().dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.PROMETHEUS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.exception_handler(ExamServiceError)
    async def exam_error_handler(request: Request, exc: ExamServiceError):
        return _error(exc.status_code, exc.message, exc.kind)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, exc.detail, "http_error")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", "validation_error",
            details=jsonable_encoder(exc.errors()),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        if settings.is_production():
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "An internal error occurred", "internal_error")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), "internal_error", debug=True)

    @app.get("/health", tags=["Health"])
    def health():
        return {"status": "ok", "version": settings.APP_VERSION, "environment": settings.ENVIRONMENT}

    app.include_router(auth_router, prefix=f"{settings.API_PREFIX}/auth", tags=["auth"])
    app.include_router(exams_router, prefix=f"{settings.API_PREFIX}/exams", tags=["exams"])
    app.include_router(admin_router, prefix=f"{settings.API_PREFIX}/admin", tags=["admin"])
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("neo_edu.main:app", host="0.0.0.0", port=8000, log_level=get_settings().LOG_LEVEL.lower())
