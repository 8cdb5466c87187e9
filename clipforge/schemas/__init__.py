"""
Pydantic schemas for request/response models.
"""

from clipforge.schemas.requests import (
    CutClipRequest,
    ProcessVideoRequest,
    UpdateClipRequest,
    VideoInfoRequest,
)
from clipforge.schemas.responses import (
    CaptionStyleResponse,
    ClipExportEvent,
    ClipResponse,
    ExportStartedResponse,
    HealthResponse,
    ProcessVideoResponse,
    ProgressEvent,
    ProjectResponse,
    ReadinessResponse,
    VideoInfoResponse,
)

__all__ = [
    "CutClipRequest",
    "ProcessVideoRequest",
    "UpdateClipRequest",
    "VideoInfoRequest",
    "CaptionStyleResponse",
    "ClipExportEvent",
    "ClipResponse",
    "ExportStartedResponse",
    "HealthResponse",
    "ProcessVideoResponse",
    "ProgressEvent",
    "ProjectResponse",
    "ReadinessResponse",
    "VideoInfoResponse",
]
