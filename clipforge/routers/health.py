"""
Health check endpoints for the clipping backend.
"""

import shutil

from fastapi import APIRouter

from clipforge import __version__
from clipforge.config import get_settings
from clipforge.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Readiness check endpoint.

    Ready means ffmpeg and ffprobe are on PATH. yt-dlp is used as a library,
    so its CLI is reported but not required. Without a Gemini key, analysis
    runs in mock mode.
    """
    ffmpeg = shutil.which("ffmpeg") is not None
    ffprobe = shutil.which("ffprobe") is not None

    return ReadinessResponse(
        ready=ffmpeg and ffprobe,
        ffmpeg=ffmpeg,
        ffprobe=ffprobe,
        ytdlp=shutil.which("yt-dlp") is not None,
        gemini_configured=get_settings().gemini_configured,
    )
