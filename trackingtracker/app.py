"""
Server entry point: FastAPI app setup and route configuration.

Sets up the FastAPI server with CORS and all API routes, loads the
persisted tracker state on startup and, when ``LAUNCH_BROWSER`` is
set, starts a Playwright browser whose traffic feeds the service.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncGenerator

import dotenv
import fastapi
import uvicorn
from fastapi.middleware import cors

from trackingtracker import config
from trackingtracker.browser import host as host_mod
from trackingtracker.routes import api, events
from trackingtracker.service import TrackerService
from trackingtracker.storage import blobs
from trackingtracker.utils import logger

dotenv.load_dotenv()

log = logger.create_logger("Server")


def create_app(settings: config.Settings | None = None) -> fastapi.FastAPI:
    """Build the FastAPI application bound to *settings*."""
    settings = settings or config.get_settings()

    @contextlib.asynccontextmanager
    async def lifespan(app: fastapi.FastAPI) -> AsyncGenerator[None]:
        log.section("Tracking Tracker Started")
        log.info("Environment", {"env": "production" if settings.is_production else "development"})

        log.start_timer("load-state")
        store = blobs.BlobStore(settings.storage_dir)
        browser: host_mod.BrowserHost | None = None
        if settings.launch_browser:
            browser = await host_mod.BrowserHost.launch(headless=settings.is_production)
            service = TrackerService(
                store, cookies=browser, windows=browser, queue_size=settings.subscriber_queue_size
            )
            await browser.attach(service)
            await browser.open(settings.start_url)
        else:
            static = host_mod.StaticHost()
            service = TrackerService(
                store, cookies=static, windows=static, queue_size=settings.subscriber_queue_size
            )
        app.state.service = service
        log.end_timer("load-state", "Tracker state loaded")
        log.success("Tracker service ready", {"storageDir": str(settings.storage_dir)})

        try:
            yield
        finally:
            if browser is not None:
                await browser.close()
            await service.drain()
            log.info("Tracker state flushed")

    app = fastapi.FastAPI(title="Tracking Tracker", lifespan=lifespan)

    # ============================================================================
    # Middleware
    # ============================================================================

    app.add_middleware(
        cors.CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================================================
    # API Routes
    # ============================================================================

    app.include_router(api.router)
    app.include_router(events.router)
    return app


# ============================================================================
# Start Server
# ============================================================================


def main() -> None:
    """Entry point for running the server."""
    settings = config.get_settings()
    log.success(f"Server listening on {settings.host}:{settings.port}")

    uvicorn.run(
        "trackingtracker.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
    )


if __name__ == "__main__":
    main()
