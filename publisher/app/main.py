import logging
import sys
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from publisher.app.api.publish import router as publish_router
from publisher.app.config import get_settings
from publisher.app.coordinator.coordinator import PublishCoordinator
from publisher.app.coordinator.registry import PublisherRegistry
from publisher.app.events import LoggingStatusSink
from publisher.app.rendering.playwright_host import launch_render_host
from publisher.app.services.records import SupabaseRecords
from publisher.app.services.storage import SupabaseStorage
from publisher.app.services.supabase import build_client

logging.basicConfig(
    level=logging.INFO,
    stream=sys.stderr,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("publisher.main")


def get_app_version() -> str:
    try:
        return version("begleitschein-publisher")
    except PackageNotFoundError:
        return "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Guarantees:
    - Fail-fast startup if configuration is invalid
    - One shared HTTP client and one headless browser per process
    - Browser and client are closed on shutdown
    """
    logger.info(
        "publisher_startup_begin",
        extra={"version": get_app_version()},
    )

    # ------------------------------------------------------------------
    # Load and validate configuration (FAIL FAST)
    # ------------------------------------------------------------------
    try:
        settings = get_settings()
    except Exception:
        logger.exception("invalid_publisher_configuration")
        raise

    app.state.settings = settings
    app.state.http_client = build_client(settings)

    try:
        async with launch_render_host(
            settings.page_size,
            settings.render_scale,
        ) as render_host:
            storage = SupabaseStorage(app.state.http_client, settings)
            records = SupabaseRecords(app.state.http_client, settings)
            status_sink = LoggingStatusSink()

            app.state.registry = PublisherRegistry(
                lambda: PublishCoordinator(
                    settings=settings,
                    render_host=render_host,
                    storage=storage,
                    records=records,
                    status_sink=status_sink,
                ),
                max_entries=settings.registry_max_entries,
            )

            logger.info("publisher_startup_complete")
            yield
    finally:
        logger.info("publisher_shutdown_begin")
        try:
            await app.state.http_client.aclose()
        except Exception:
            logger.warning("http_client_shutdown_failed")


def create_app() -> FastAPI:
    """
    Application factory for the Begleitschein publisher.
    """
    app = FastAPI(
        title="begleitschein-publisher",
        description=(
            "Renders Begleitschein PDFs, publishes them to object storage "
            "and records their public URL."
        ),
        version=get_app_version(),
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(publish_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness probe",
    )
    async def health_check():
        return {
            "status": "ok",
            "service": "begleitschein-publisher",
            "version": app.version,
        }

    return app


app = create_app()
