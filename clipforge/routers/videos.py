"""
Videos API Router - Projects, clips, exports and progress streaming.
"""

import json
import logging
import os
import re
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import FileResponse, StreamingResponse

from clipforge.auth import verify_api_key
from clipforge.config import get_settings
from clipforge.schemas.requests import (
    CutClipRequest,
    ProcessVideoRequest,
    UpdateClipRequest,
    VideoInfoRequest,
)
from clipforge.schemas.responses import (
    CaptionStyleResponse,
    ClipResponse,
    ExportStartedResponse,
    ProcessVideoResponse,
    ProjectResponse,
    VideoInfoResponse,
)
from clipforge.services.background import BackgroundRunner
from clipforge.services.caption_generator import list_caption_styles
from clipforge.services.export_pipeline import ExportPaths, ExportPipeline
from clipforge.services.ingest_pipeline import IngestPipeline
from clipforge.services.media_operations import remove_files
from clipforge.services.progress_bus import ProgressEventBus, Subscription
from clipforge.services.project_store import (
    Clip,
    ClipBusyError,
    ClipStatus,
    Project,
    ProjectStore,
)
from clipforge.services.video_downloader import (
    VideoDownloadError,
    VideoDownloaderService,
    is_supported_url,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/videos", tags=["Videos"])

UNSUPPORTED_URL_DETAIL = "Please provide a valid YouTube or Twitch URL"


# ============================================================================
# Dependencies
# ============================================================================


def get_store(request: Request) -> ProjectStore:
    return request.app.state.store


def get_bus(request: Request) -> ProgressEventBus:
    return request.app.state.bus


def get_runner(request: Request) -> BackgroundRunner:
    return request.app.state.runner


def get_downloader(request: Request) -> VideoDownloaderService:
    return request.app.state.downloader


def get_ingest_pipeline(request: Request) -> IngestPipeline:
    return request.app.state.ingest_pipeline


def get_export_pipeline(request: Request) -> ExportPipeline:
    return request.app.state.export_pipeline


def _require_project(store: ProjectStore, project_id: str) -> Project:
    project = store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def _require_clip(project: Project, clip_id: str) -> Clip:
    clip = project.find_clip(clip_id)
    if clip is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clip not found")
    return clip


def _require_supported_url(url: Optional[str]) -> str:
    url = (url or "").strip()
    if not is_supported_url(url):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=UNSUPPORTED_URL_DETAIL)
    return url


# ============================================================================
# Ingestion
# ============================================================================


@router.post("/info", response_model=VideoInfoResponse)
async def get_video_info(
    body: VideoInfoRequest,
    downloader: VideoDownloaderService = Depends(get_downloader),
) -> VideoInfoResponse:
    """Look up a video's metadata without downloading it."""
    url = _require_supported_url(body.url)

    try:
        info = await downloader.get_video_info(url)
    except VideoDownloadError as e:
        logger.warning(f"Info lookup failed for {url}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not fetch video info. Check the URL.",
        )

    max_minutes = get_settings().max_video_duration_minutes
    if info.duration_seconds > max_minutes * 60:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Video too long ({info.duration_str}). Maximum is {max_minutes} minutes.",
        )

    return VideoInfoResponse(**info.to_dict())


@router.post(
    "/process",
    response_model=ProcessVideoResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(verify_api_key)],
)
async def process_video(
    body: ProcessVideoRequest,
    store: ProjectStore = Depends(get_store),
    runner: BackgroundRunner = Depends(get_runner),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> ProcessVideoResponse:
    """
    Create a project and start ingestion in the background.

    Follow progress with GET /api/videos/progress/{project_id}.
    """
    url = _require_supported_url(body.url)

    project = store.create_project(url, user_id=body.user_id, title=body.title)
    runner.spawn(pipeline.run(project.id), name=f"ingest-{project.id}")
    logger.info(f"Project {project.id} queued for {url}")

    return ProcessVideoResponse(
        project_id=project.id,
        project=ProjectResponse.from_project(project),
    )


async def event_stream(subscription: Subscription, keepalive_seconds: float) -> AsyncIterator[str]:
    """Render a subscription as Server-Sent Events, with keep-alive comments while idle."""
    while True:
        event = await subscription.get(timeout=keepalive_seconds)
        if event is None:
            if subscription.closed:
                return
            yield ": keep-alive\n\n"
            continue
        payload = event.model_dump(mode="json", exclude_none=True)
        yield f"data: {json.dumps(payload)}\n\n"


@router.get("/progress/{project_id}")
async def stream_progress(
    project_id: str,
    bus: ProgressEventBus = Depends(get_bus),
) -> StreamingResponse:
    """Stream project and export progress as Server-Sent Events."""
    subscription = bus.subscribe(project_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    async def stream() -> AsyncIterator[str]:
        try:
            async for chunk in event_stream(subscription, get_settings().sse_keepalive_seconds):
                yield chunk
        finally:
            bus.unsubscribe(subscription)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/caption-styles", response_model=list[CaptionStyleResponse])
async def get_caption_styles() -> list[CaptionStyleResponse]:
    """List caption styles available for export."""
    return [CaptionStyleResponse(**style) for style in list_caption_styles()]


# ============================================================================
# Projects
# ============================================================================


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    user_id: Optional[str] = None,
    store: ProjectStore = Depends(get_store),
) -> list[ProjectResponse]:
    """List projects, newest first."""
    return [ProjectResponse.from_project(p) for p in store.list_projects(user_id)]


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    store: ProjectStore = Depends(get_store),
) -> ProjectResponse:
    return ProjectResponse.from_project(_require_project(store, project_id))


# ============================================================================
# Clips
# ============================================================================


@router.post(
    "/{project_id}/cut",
    response_model=ClipResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_api_key)],
)
async def cut_clip(
    project_id: str,
    body: CutClipRequest,
    store: ProjectStore = Depends(get_store),
) -> ClipResponse:
    """Create a manual clip from an explicit time range."""
    project = _require_project(store, project_id)
    if not project.video_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Video not yet downloaded")

    clip = store.add_clip(project_id, Clip(
        title=body.title or "Manual Clip",
        start=body.start,
        end=body.end,
        caption_style=body.caption_style or get_settings().default_caption_style,
        source="manual",
    ))
    if clip is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return ClipResponse.from_clip(project_id, clip)


@router.patch(
    "/{project_id}/clips/{clip_id}",
    response_model=ClipResponse,
    dependencies=[Depends(verify_api_key)],
)
async def update_clip(
    project_id: str,
    clip_id: str,
    body: UpdateClipRequest,
    store: ProjectStore = Depends(get_store),
) -> ClipResponse:
    """Edit a clip. Start/end are validated against the merged result."""
    clip = _require_clip(_require_project(store, project_id), clip_id)
    if clip.status == ClipStatus.EXPORTING:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Clip is exporting")

    fields = body.model_dump(exclude_none=True)
    start = fields.get("start", clip.start)
    end = fields.get("end", clip.end)
    if end <= start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must be after start")
    max_seconds = get_settings().max_manual_clip_seconds
    if clip.source == "manual" and end - start > max_seconds:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Clip cannot be longer than {max_seconds:g} seconds",
        )

    updated = store.update_clip(project_id, clip_id, **fields)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clip not found")
    return ClipResponse.from_clip(project_id, updated)


@router.delete(
    "/{project_id}/clips/{clip_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(verify_api_key)],
)
async def delete_clip(
    project_id: str,
    clip_id: str,
    store: ProjectStore = Depends(get_store),
) -> Response:
    """Delete a clip and its exported files."""
    clip = _require_clip(_require_project(store, project_id), clip_id)
    if clip.status == ClipStatus.EXPORTING:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Clip is exporting")

    if not store.remove_clip(project_id, clip_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clip not found")

    paths = ExportPaths.for_clip(get_settings().clips_dir, project_id, clip_id)
    remove_files([clip.clip_path, clip.thumb_path, paths.raw, paths.framed])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Export
# ============================================================================


@router.post(
    "/{project_id}/clips/{clip_id}/export",
    response_model=ExportStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(verify_api_key)],
)
async def export_clip(
    project_id: str,
    clip_id: str,
    store: ProjectStore = Depends(get_store),
    runner: BackgroundRunner = Depends(get_runner),
    pipeline: ExportPipeline = Depends(get_export_pipeline),
) -> ExportStartedResponse:
    """Start rendering a clip. Progress arrives as clip_export events on the progress stream."""
    project = _require_project(store, project_id)
    _require_clip(project, clip_id)
    if not project.video_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Source video not available")

    try:
        previous = store.start_clip_export(project_id, clip_id)
    except ClipBusyError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Clip is already exporting")
    if previous is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clip not found")

    runner.spawn(pipeline.run(project_id, clip_id, previous), name=f"export-{clip_id}")

    current = _require_clip(_require_project(store, project_id), clip_id)
    return ExportStartedResponse(clip_id=clip_id, clip=ClipResponse.from_clip(project_id, current))


@router.get("/{project_id}/clips/{clip_id}/download")
async def download_clip(
    project_id: str,
    clip_id: str,
    store: ProjectStore = Depends(get_store),
) -> FileResponse:
    """Download an exported clip as an MP4 attachment."""
    clip = _require_clip(_require_project(store, project_id), clip_id)
    if not clip.clip_path:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clip not exported yet")
    if not os.path.isfile(clip.clip_path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return FileResponse(
        clip.clip_path,
        media_type="video/mp4",
        filename=safe_download_name(clip.title),
    )


@router.get("/{project_id}/clips/{clip_id}/thumbnail")
async def get_thumbnail(
    project_id: str,
    clip_id: str,
    store: ProjectStore = Depends(get_store),
) -> FileResponse:
    project = store.get_project(project_id)
    clip = project.find_clip(clip_id) if project else None
    if clip is None or not clip.thumb_path or not os.path.isfile(clip.thumb_path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thumbnail not available")
    return FileResponse(clip.thumb_path, media_type="image/jpeg")


def safe_download_name(title: Optional[str]) -> str:
    """Build an ASCII-only attachment name from a clip title."""
    stem = re.sub(r"[^A-Za-z0-9]", "_", title or "clip")[:40]
    return f"clipforge_{stem}.mp4"
