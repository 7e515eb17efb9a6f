"""
Pandora server: one authenticated API over the media stack.

TMDB, Watchmode, Jackett, qBittorrent, Portainer, Jellyfin and Cloud
Commander behind a single FastAPI app, with live download updates pushed
over /ws/status.
"""

import logging
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.exceptions import AppError
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from middleware.auth import AuthMiddleware
from routers import auth, containers, downloads, files, libraries, media, system, websocket

settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting Pandora server", version=VERSION)
    set_startup_time()

    await container.database().startup()
    await container.cache().startup()
    await container.registry().startup()
    await container.cache_sweeper().start()

    logger.info("Services started successfully",
                services=container.registry().available_services())
    yield

    await container.cache_sweeper().stop()
    await container.hub().close_all()
    await container.registry().close()
    await container.cache().shutdown()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


app = FastAPI(
    title="Pandora Server",
    version=VERSION,
    description="Media discovery, downloads and home server management",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("Request rejected", path=request.url.path, code=exc.code, error=exc.message)
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": {"code": exc.code, "message": exc.message}},
    )


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception", error_type=type(e).__name__,
                         error=str(e), path=request.url.path, exc_info=True)
            return ORJSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
                }
            )


# Last added runs first: CORS, then catch-all, then auth.
app.add_middleware(AuthMiddleware)
app.add_middleware(CatchAllExceptionsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(containers.router)
app.include_router(downloads.router)
app.include_router(files.router)
app.include_router(libraries.router)
app.include_router(media.router)
app.include_router(system.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check():
    health = await get_health_status(
        container.database(), container.cache(), container.registry(), container.hub()
    )
    return {
        **health,
        "version": VERSION,
        "environment": "development" if settings.debug else "production",
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Pandora server", host=settings.host, port=settings.port, debug=settings.debug)
    # Connections live in process memory: one worker only.
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1
    )
