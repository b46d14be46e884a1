"""GAgent - Main FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from gagent import __version__
from gagent.agent.registry import build_registry
from gagent.api import api_router
from gagent.api.models import HealthResponse
from gagent.config import Settings, settings
from gagent.errors import AgentError
from gagent.events.bus import EventBus
from gagent.game.templates import TemplateCatalog
from gagent.llm.text_generator import TextGenerator, create_text_generator
from gagent.logging_config import setup_logging
from gagent.projects.store import ProjectStore, create_project_store
from gagent.storage.artifacts import ArtifactStore

# Configure logging early
setup_logging(debug=settings.debug, json_logs=not settings.debug)

logger = logging.getLogger(__name__)

# HTTP status per AgentError code; anything else is a 400
ERROR_STATUS = {
    "GeneratorUnavailable": 503,
    "GeneratorCallFailed": 502,
    "AnalysisFailed": 502,
    "ArtifactNotFound": 404,
    "NoTemplateForKind": 422,
    "PathTraversalRejected": 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler with graceful shutdown."""
    # === STARTUP ===
    cfg: Settings = app.state.settings
    logger.info(f"{cfg.app_name} starting up...")

    if cfg.project_store == "sql":
        from gagent.database import init_db
        await init_db()

    logger.info(
        f"{cfg.app_name} ready: {len(app.state.catalog)} templates, "
        f"generator={app.state.generator.name} (available={app.state.generator.is_available()})"
    )

    yield

    # === SHUTDOWN ===
    logger.info(f"{cfg.app_name} shutting down...")

    try:
        await app.state.registry.shutdown()
        logger.info("All agent runs cancelled")
    except Exception as e:
        logger.error(f"Error cancelling agent runs: {e}")

    if cfg.project_store == "sql":
        try:
            from gagent.database import close_db
            await close_db()
            logger.info("Database connections closed")
        except Exception as e:
            logger.error(f"Error closing database: {e}")

    logger.info(f"{cfg.app_name} shutdown complete")


async def agent_error_handler(request: Request, exc: AgentError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.code, 400)
    logger.warning(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.code, "details": exc.details},
    )


def create_app(
    app_settings: Settings | None = None,
    *,
    generator: TextGenerator | None = None,
    projects: ProjectStore | None = None,
) -> FastAPI:
    """Build the application and its shared collaborators."""
    cfg = app_settings or settings

    app = FastAPI(
        title=cfg.app_name,
        version=__version__,
        description="GAgent - an agent that plans, builds and tests small educational games.",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    store = ArtifactStore(cfg.artifact_root)
    bus = EventBus(max_queue=cfg.event_queue_size)
    catalog = TemplateCatalog.from_directory(cfg.templates_dir)
    app.state.settings = cfg
    app.state.store = store
    app.state.bus = bus
    app.state.catalog = catalog
    app.state.generator = generator or create_text_generator(cfg)
    app.state.projects = projects or create_project_store(cfg.project_store)
    app.state.registry = build_registry(
        cfg,
        bus,
        store,
        catalog,
        generator=app.state.generator,
        projects=app.state.projects,
    )

    # Rate limiting - keyed by remote address
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[cfg.rate_limit_default] if cfg.rate_limit_enabled else [],
        enabled=cfg.rate_limit_enabled,
    )
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(AgentError, agent_error_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests with timing information."""
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        # Skip previews and health checks to reduce noise
        path = request.url.path
        if not path.startswith(cfg.preview_url_prefix) and path != "/health":
            logger.info(
                "http_request",
                extra={
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                    "client_ip": request.client.host if request.client else "unknown",
                },
            )
        return response

    app.include_router(api_router)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        """Health check endpoint."""
        registry = app.state.registry
        return HealthResponse(
            status="ok",
            version=__version__,
            generator=app.state.generator.name,
            generator_available=app.state.generator.is_available(),
            templates=len(catalog),
            controllers=len(registry.task_ids()),
            running_tasks=registry.running_count,
        )

    # Generated games are served straight from the artifact root
    app.mount(cfg.preview_url_prefix, StaticFiles(directory=store.root, html=True), name="previews")

    return app


app = create_app()


def main():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "gagent.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
