import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feedwatch import __version__
from feedwatch.api import api_router
from feedwatch.config import settings
from feedwatch.core.errors import FeedWatchError
from feedwatch.logging_config import setup_logging
from feedwatch.runtime import build_runtime

logger = logging.getLogger(__name__)


def _init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
    except ImportError:
        logger.warning("sentry-sdk not installed, skipping Sentry initialization")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        integrations=[FastApiIntegration()],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        send_default_pii=False,
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline (store, bus, browser, worker, monitor) for the app's lifetime."""
    runtime = build_runtime(settings)
    runtime.start()
    app.state.runtime = runtime
    logger.info(f"Pipeline ready (poll every {settings.poll_interval_seconds}s)")
    try:
        yield
    finally:
        await runtime.close()
        app.state.runtime = None


def create_app() -> FastAPI:
    setup_logging(app_env=settings.app_env, log_level=settings.log_level)
    _init_sentry()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)

    @app.exception_handler(FeedWatchError)
    async def pipeline_exception_handler(request: Request, exc: FeedWatchError):
        logger.error(f"Pipeline error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/health")
    async def health_check(request: Request):
        runtime = getattr(request.app.state, "runtime", None)
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": __version__,
            "monitor": runtime.monitor.session.state.value if runtime else None,
        }

    logger.info(f"FeedWatch created (env={settings.app_env})")
    return app


app = create_app()
