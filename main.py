import contextlib
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from app.routes import router
from app.core.auth_config import AuthOptions, load_auth_config
from app.core.config import DEV_SECRET_KEY, Settings, settings as default_settings
from app.core.database import build_engine, build_session_factory, init_db
from app.core.errors import AuthError, PersistenceError
from app.core.logging_config import setup_logging
from app.core.rate_limit import limiter, rate_limit_handler
from app.core.security import AccessTokenIssuer, Clock, PasswordHasher, utcnow
from app.core.token_sweeper import TokenSweeper

logger = logging.getLogger(__name__)


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        logger.error(f"{request.method} {request.url.path} failed on a storage error")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        message = error.get("msg", "Invalid value")
        errors.append({
            "field": ".".join(location) or "body",
            "message": message.removeprefix("Value error, "),
        })
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "errors": errors},
    )


def create_app(
    settings: Optional[Settings] = None,
    auth_options: Optional[AuthOptions] = None,
    clock: Clock = utcnow,
    enable_metrics: bool = True,
) -> FastAPI:
    settings = settings or default_settings
    auth_options = auth_options or AuthOptions.from_config(load_auth_config(settings.AUTH_CONFIG_PATH))

    settings.check_secret_key()
    if settings.SECRET_KEY == DEV_SECRET_KEY:
        logger.warning("Using the development SECRET_KEY; set SECRET_KEY before deploying")

    engine = build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)
    sweeper = TokenSweeper(
        session_factory,
        interval_seconds=auth_options.sweep_interval_minutes * 60,
        clock=clock,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        sweeper.start()
        yield
        logger.info(f"Shutting down {settings.SERVICE_NAME}...")
        await sweeper.stop()
        engine.dispose()

    app = FastAPI(
        title="Notes Auth Service",
        description="Authentication and session management API",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.auth_options = auth_options
    app.state.clock = clock
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.password_hasher = PasswordHasher(rounds=auth_options.bcrypt_rounds)
    app.state.token_issuer = AccessTokenIssuer(
        settings.SECRET_KEY,
        algorithm=auth_options.algorithm,
        ttl=auth_options.access_token_ttl,
        clock=clock,
    )
    app.state.sweeper = sweeper

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        if response.status_code >= 400 or not settings.IS_PRODUCTION:
            logger.info(
                f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f} ms"
            )
        return response

    app.include_router(router, prefix="/auth", tags=["auth"])

    if enable_metrics:
        Instrumentator(
            should_group_status_codes=True,
            should_ignore_untemplated=True,
            excluded_handlers=["/metrics", "/health"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "service": settings.SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/")
    async def root():
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "status": "running"
        }

    return app


setup_logging(default_settings.LOG_LEVEL, structured=default_settings.IS_PRODUCTION)
app = create_app()
