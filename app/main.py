import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, build_session_factory, engine as default_engine, init_db
from app.features.permissions.exceptions import InvalidGrant
from app.features.permissions.routes import create_router as create_permission_router
from app.features.permissions.seed import seed_catalog
from app.features.permissions.service import AccessControl
from app.features.users.dependencies import get_rate_limit_key
from app.utils import get_logger


log = get_logger(__name__)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


async def sweep_periodically(access: AccessControl, interval: float):
    """Expire lapsed overrides every interval seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await access.store.sweep_expired()
        except Exception:
            log.error("Override sweep failed", exc_info=True)


def create_app(
    engine: Optional[AsyncEngine] = None,
    access: Optional[AccessControl] = None,
    seed_on_startup: Optional[bool] = None,
    sweep_interval: Optional[float] = None,
) -> FastAPI:
    """
    Build the application with its access control wired in.

    Everything the authorization path needs (catalog, override store,
    resolver, guards) is constructed here, once, before the first request.
    """
    engine = engine or default_engine
    if access is None:
        session_factory = AsyncSessionLocal if engine is default_engine else build_session_factory(engine)
        access = AccessControl.create(session_factory, cache_ttl=config.OVERRIDE_CACHE_TTL)
    seed = config.SEED_ON_STARTUP if seed_on_startup is None else seed_on_startup
    interval = config.OVERRIDE_SWEEP_INTERVAL if sweep_interval is None else sweep_interval

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create tables, optionally seed the catalog, and load it from the database."""
        log.info("Initializing database...")
        await init_db(engine)
        if seed:
            async with access.store.session_factory() as db:
                await seed_catalog(db)
        await access.reload_catalog()
        log.info("Database initialized successfully")

        sweeper = None
        if interval > 0:
            log.info("Sweeping expired overrides every %s seconds", interval)
            sweeper = asyncio.create_task(sweep_periodically(access, interval))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper

    log.info("Initializing server")
    app = FastAPI(
        title="Access Control Core",
        description="Permission catalog, per-user overrides and authorization guards",
        version="0.1.0",
        docs_url="/docs" if config.ENABLE_DOCS else None,
        redoc_url="/redoc" if config.ENABLE_DOCS else None,
        openapi_url="/openapi.json" if config.ENABLE_DOCS else None,
        lifespan=lifespan,
    )
    app.state.access = access

    limiter = Limiter(key_func=get_rate_limit_key)
    app.state.limiter = limiter

    app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

    if config.ENABLE_DOCS:
        log.warning("Docs enabled")
    if config.ALLOW_ORIGIN:
        log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
        origins = [config.ALLOW_ORIGIN]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        errors = dict()
        for error in exc.errors():
            if "loc" not in error or "msg" not in error:
                continue
            key = error["loc"][-1]
            if key == "__root__":
                key = "root"
            errors[key] = error["msg"]
        log.info("Request validation error %s", errors)
        return JSONResponse(status_code=400, content=jsonable_encoder(errors))

    @app.exception_handler(InvalidGrant)
    async def invalid_grant_handler(_request: Request, exc: InvalidGrant):
        log.info("Rejected override write: %s", exc.message)
        content = {"detail": exc.message}
        if exc.field:
            content["field"] = exc.field
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
        return JSONResponse({"error": "You are going too fast"}, status_code=429)

    @app.get("/")
    async def root():
        """Root endpoint - API health check."""
        return {
            "message": "Access Control Core API",
            "version": "0.1.0",
            "status": "online",
            "docs": "/docs" if config.ENABLE_DOCS else None,
            "authentication": {
                "info": "The principal is supplied by the authentication layer in front of this service",
                "trusted_headers": [config.PRINCIPAL_ID_HEADER, config.PRINCIPAL_ROLE_HEADER]
                if config.TRUST_PRINCIPAL_HEADERS else [],
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    # Permission routes
    app.include_router(create_permission_router(access, limiter), prefix="/permissions", tags=["permissions"])

    return app


app = create_app()
