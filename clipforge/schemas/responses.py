"""
Response schemas for the videos API.

These schemas also define the JSON payload of progress stream events.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from clipforge.services.project_store import Clip, ClipStatus, Project, ProjectStatus


class CaptionWordResponse(BaseModel):
    """A caption word with clip-relative timing."""

    word: str
    start: float
    end: Optional[float] = None


class ClipMetadataResponse(BaseModel):
    """Generated social metadata for a clip."""

    titles: list[str] = Field(default_factory=list)
    hashtags: list[str] = Field(default_factory=list)
    caption: str = ""


class ClipResponse(BaseModel):
    """A clip as returned to clients."""

    id: str
    title: str
    start: float
    end: float
    duration: float
    status: ClipStatus
    exported: bool
    reframe: bool
    caption_style: str
    source: str

    hook: Optional[str] = None
    reason: Optional[str] = None
    virality_score: Optional[float] = None
    category: Optional[str] = None
    transcript: Optional[str] = None
    captions: list[CaptionWordResponse] = Field(default_factory=list)
    metadata: Optional[ClipMetadataResponse] = None

    export_progress: float = 0
    export_message: Optional[str] = None
    export_error: Optional[str] = None
    file_size_bytes: Optional[int] = None
    download_url: Optional[str] = Field(None, description="Set once the clip is exported")
    thumbnail_url: Optional[str] = Field(None, description="Set once the clip is exported")

    created_at: datetime

    @classmethod
    def from_clip(cls, project_id: str, clip: Clip) -> "ClipResponse":
        base = f"/api/videos/{project_id}/clips/{clip.id}"
        return cls(
            id=clip.id,
            title=clip.title,
            start=clip.start,
            end=clip.end,
            duration=round(clip.duration, 3),
            status=clip.status,
            exported=clip.exported,
            reframe=clip.reframe,
            caption_style=clip.caption_style,
            source=clip.source,
            hook=clip.hook,
            reason=clip.reason,
            virality_score=clip.virality_score,
            category=clip.category,
            transcript=clip.transcript,
            captions=[
                CaptionWordResponse(word=c.word, start=c.start, end=c.end)
                for c in clip.captions
            ],
            metadata=(
                ClipMetadataResponse(
                    titles=clip.metadata.titles,
                    hashtags=clip.metadata.hashtags,
                    caption=clip.metadata.caption,
                )
                if clip.metadata else None
            ),
            export_progress=clip.export_progress,
            export_message=clip.export_message,
            export_error=clip.export_error,
            file_size_bytes=clip.file_size_bytes,
            download_url=f"{base}/download" if clip.clip_path else None,
            thumbnail_url=f"{base}/thumbnail" if clip.thumb_path else None,
            created_at=clip.created_at,
        )


class ProjectResponse(BaseModel):
    """A project with its clips."""

    id: str
    user_id: str
    url: str
    title: str
    status: ProjectStatus
    progress: float
    progress_message: str
    duration_seconds: Optional[float] = None
    video_info: Optional[dict[str, Any]] = None
    transcript: Optional[str] = None
    used_mock: bool = False
    error: Optional[str] = None
    source_ready: bool = Field(False, description="Whether the source video has been downloaded")
    clips: list[ClipResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            user_id=project.user_id,
            url=project.url,
            title=project.title,
            status=project.status,
            progress=project.progress,
            progress_message=project.progress_message,
            duration_seconds=project.duration_seconds,
            video_info=project.video_info,
            transcript=project.transcript,
            used_mock=project.used_mock,
            error=project.error,
            source_ready=project.video_path is not None,
            clips=[ClipResponse.from_clip(project.id, c) for c in project.clips],
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


class ProcessVideoResponse(BaseModel):
    """Response for an accepted ingestion request."""

    project_id: str
    project: ProjectResponse


class VideoInfoResponse(BaseModel):
    """Remote video metadata."""

    id: str
    title: str
    duration: float = Field(..., description="Duration in seconds")
    duration_str: str
    thumbnail: Optional[str] = None
    uploader: Optional[str] = None
    view_count: Optional[int] = None
    upload_date: Optional[str] = None
    description: str = ""
    chapters: int = Field(0, description="Number of chapters")


class CaptionStyleResponse(BaseModel):
    """A caption style available for export."""

    id: str
    name: str
    font: str
    preview_colors: dict[str, str]


class ClipExportEvent(BaseModel):
    """Progress of one clip export."""

    clip_id: str
    progress: float
    message: Optional[str] = None
    done: bool = False
    error: Optional[str] = None


class ProgressEvent(BaseModel):
    """One event on a project's progress stream."""

    progress_percent: Optional[float] = None
    message: Optional[str] = None
    status: Optional[ProjectStatus] = None
    clip_export: Optional[ClipExportEvent] = None
    clips: Optional[list[ClipResponse]] = None

    @property
    def is_terminal(self) -> bool:
        """Terminal events end an ingestion or an export and are never dropped."""
        if self.status in (ProjectStatus.COMPLETED, ProjectStatus.ERROR):
            return True
        return self.clip_export is not None and self.clip_export.done


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Response for readiness check endpoint."""

    ready: bool = Field(..., description="Whether the service can process videos")
    ffmpeg: bool
    ffprobe: bool
    ytdlp: bool
    gemini_configured: bool = Field(..., description="False means analysis runs in mock mode")


class ExportStartedResponse(BaseModel):
    """Response for an accepted export request."""

    clip_id: str
    message: str = "Export started"
    clip: ClipResponse
