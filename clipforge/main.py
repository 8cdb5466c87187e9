"""
FastAPI application entry point for ClipForge.

ClipForge turns long videos into vertical short-form clips:
1. Ingestion (yt-dlp download, Gemini transcription and viral segment detection)
2. Per-clip export (FFmpeg trim, 9:16 reframe, burned-in captions, thumbnail)
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from clipforge import __version__
from clipforge.config import get_settings
from clipforge.exception_handlers import validation_exception_handler
from clipforge.routers import health, videos
from clipforge.services.background import BackgroundRunner
from clipforge.services.clip_analyzer import ClipAnalyzerService
from clipforge.services.export_pipeline import ExportPipeline
from clipforge.services.ingest_pipeline import IngestPipeline
from clipforge.services.media_operations import MediaOperationsService
from clipforge.services.progress_bus import ProgressEventBus
from clipforge.services.project_store import ProjectStore
from clipforge.services.video_downloader import VideoDownloaderService

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Builds the store, adapters and pipelines on startup and cancels
    running pipelines on shutdown.
    """
    settings = get_settings()
    logger.info("Starting ClipForge...")

    for directory in (settings.uploads_dir, settings.clips_dir):
        os.makedirs(directory, exist_ok=True)
    logger.info(f"Uploads directory: {settings.uploads_dir}, clips directory: {settings.clips_dir}")

    store = ProjectStore()
    bus = ProgressEventBus(store, queue_size=settings.progress_queue_size)
    media = MediaOperationsService(settings)
    downloader = VideoDownloaderService(settings)
    analyzer = ClipAnalyzerService(media=media, settings=settings)
    runner = BackgroundRunner()

    # Store in app state for dependency injection
    app.state.store = store
    app.state.bus = bus
    app.state.media = media
    app.state.downloader = downloader
    app.state.analyzer = analyzer
    app.state.runner = runner
    app.state.ingest_pipeline = IngestPipeline(store, bus, downloader, media, analyzer, settings)
    app.state.export_pipeline = ExportPipeline(store, bus, media, settings)
    logger.info(f"Max concurrent exports: {settings.max_concurrent_exports}")

    # Verify external tools
    _verify_external_tools()

    if analyzer.uses_mock:
        logger.warning("GEMINI_API_KEY not set - AI analysis will run in mock mode")
    else:
        logger.info(f"Gemini models: {', '.join(settings.gemini_models)}")

    logger.info("ClipForge ready to accept requests.")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down ClipForge...")
    await runner.shutdown()
    logger.info("Shutdown complete")


def _verify_external_tools():
    """Verify that required external tools are available."""
    tools = {
        "ffmpeg": "FFmpeg for video rendering",
        "ffprobe": "FFprobe for video analysis",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - some features may not work")


# Create FastAPI application
app = FastAPI(
    title="ClipForge",
    description="""
ClipForge - AI video clipping backend.

## Workflow

1. Check a video: `POST /api/videos/info`
2. Start ingestion: `POST /api/videos/process`
3. Follow progress: `GET /api/videos/progress/{project_id}` (Server-Sent Events)
4. Export a clip: `POST /api/videos/{project_id}/clips/{clip_id}/export`
5. Download it: `GET /api/videos/{project_id}/clips/{clip_id}/download`
    """,
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Validation errors never echo the rejected input
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(videos.router)


@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": "ClipForge",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "clipforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
