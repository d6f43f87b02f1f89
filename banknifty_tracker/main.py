"""
Main FastAPI application for Bank Nifty Tracker.
Includes lifespan management for background tasks and service initialization.
"""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import time

from .core.config import Settings, settings as default_settings
from .core.logging_config import setup_logging, create_logger
from .api.endpoints import router as api_router
from .api.schemas import ErrorResponse
from .services.tracker_service import TrackerService

logger = create_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[TrackerService] = None,
    start_background_tasks: bool = True
) -> FastAPI:
    """Build the application. A prebuilt service can be injected for tests."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the tracker service and stop it on shutdown."""
        logger.info("Starting Bank Nifty Tracker", extra={
            "version": settings.app_version,
            "debug": settings.debug
        })

        tracker = app.state.tracker
        try:
            await tracker.initialize()
            if start_background_tasks:
                await tracker.start_background_tasks()
            logger.info("Bank Nifty Tracker started successfully")
        except Exception as e:
            logger.error("Failed to start Bank Nifty Tracker", extra={"error": str(e)})
            raise

        yield  # Application is running

        logger.info("Shutting down Bank Nifty Tracker")
        try:
            await tracker.shutdown()
        except Exception as e:
            logger.error("Error during service shutdown", extra={"error": str(e)})

    app = FastAPI(
        title=settings.app_name,
        description="Bank Nifty constituent quotes, multipliers and index divergence history",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan
    )
    app.state.tracker = service or TrackerService.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests and responses."""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error("Request failed", extra={
                "method": request.method,
                "url": str(request.url),
                "error": str(e),
                "process_time": round(process_time, 4)
            })
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error="Internal server error").dict(exclude={"timestamp"})
            )

        process_time = time.time() - start_time
        logger.info("Request completed", extra={
            "method": request.method,
            "url": str(request.url),
            "status_code": response.status_code,
            "process_time": round(process_time, 4)
        })
        response.headers["X-Process-Time"] = str(process_time)
        return response

    app.include_router(api_router, tags=["Bank Nifty Tracker"])
    return app


def main() -> None:
    import uvicorn

    setup_logging(default_settings)
    uvicorn.run(
        create_app(default_settings),
        host=default_settings.server_host,
        port=default_settings.server_port,
        log_level=default_settings.log_level.lower(),
        access_log=False
    )


if __name__ == "__main__":
    main()
