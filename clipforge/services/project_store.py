"""
In-memory project store.

Holds every Project and its Clips for the lifetime of the process. All access
goes through ProjectStore, which serializes mutations with a lock and hands
out copies so callers never share mutable records.
"""

import copy
import dataclasses
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from clipforge.services.caption_generator import CaptionWord

logger = logging.getLogger(__name__)


class ProjectStatus(str, Enum):
    """Lifecycle of a project's ingestion."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ClipStatus(str, Enum):
    """Lifecycle of a clip's export."""

    READY = "ready"
    EXPORTING = "exporting"
    EXPORTED = "exported"
    EXPORT_ERROR = "export_error"


# Fields cleared whenever a clip leaves the exported state
ARTIFACT_FIELDS = {"clip_path": None, "thumb_path": None, "file_size_bytes": None}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClipMetadata:
    """Social metadata generated for a clip."""

    titles: list[str] = field(default_factory=list)
    hashtags: list[str] = field(default_factory=list)
    caption: str = ""


@dataclass
class Clip:
    """A timed segment of a project's source video."""

    title: str
    start: float
    end: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ClipStatus = ClipStatus.READY
    exported: bool = False
    reframe: bool = True
    caption_style: str = "viral-bold"
    source: str = "ai"  # ai, mock, manual

    # AI analysis output
    hook: Optional[str] = None
    reason: Optional[str] = None
    virality_score: Optional[float] = None
    category: Optional[str] = None
    transcript: Optional[str] = None
    captions: list[CaptionWord] = field(default_factory=list)
    metadata: Optional[ClipMetadata] = None

    # Export state
    export_progress: float = 0
    export_message: Optional[str] = None
    export_error: Optional[str] = None
    clip_path: Optional[str] = None
    thumb_path: Optional[str] = None
    file_size_bytes: Optional[int] = None

    created_at: datetime = field(default_factory=utcnow)

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class Project:
    """One ingestion job for a single source video."""

    url: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = "anonymous"
    title: str = "Untitled Project"
    status: ProjectStatus = ProjectStatus.QUEUED
    progress: float = 0
    progress_message: str = "Queued..."
    video_path: Optional[str] = None
    duration_seconds: Optional[float] = None
    video_info: Optional[dict[str, Any]] = None
    transcript: Optional[str] = None
    used_mock: bool = False
    error: Optional[str] = None
    clips: list[Clip] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def find_clip(self, clip_id: str) -> Optional[Clip]:
        return next((c for c in self.clips if c.id == clip_id), None)


class ProjectStore:
    """
    Thread-safe registry of projects and clips.

    Every method is one atomic logical operation. Returned objects are deep
    copies; changes to them have no effect until written back through
    update_project / update_clip.
    """

    def __init__(self):
        self._projects: dict[str, Project] = {}
        self._lock = threading.RLock()

    def create_project(
        self,
        url: str,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
        video_info: Optional[dict[str, Any]] = None,
    ) -> Project:
        project = Project(
            url=url,
            user_id=user_id or "anonymous",
            title=title or (video_info or {}).get("title") or "Untitled Project",
            video_info=video_info,
        )
        with self._lock:
            self._projects[project.id] = project
            logger.debug(f"Project {project.id} created for {url}")
            return copy.deepcopy(project)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
            return copy.deepcopy(project) if project else None

    def list_projects(self, user_id: Optional[str] = None) -> list[Project]:
        """List projects, newest first, optionally filtered by owner."""
        with self._lock:
            projects = [
                p for p in self._projects.values()
                if not user_id or p.user_id == user_id
            ]
            projects.sort(key=lambda p: p.created_at, reverse=True)
            return copy.deepcopy(projects)

    def update_project(self, project_id: str, **fields: Any) -> Optional[Project]:
        """
        Apply a partial update to a project.

        Raises:
            TypeError: If a field name is unknown or is `clips` (use the clip methods)
        """
        if "clips" in fields:
            raise TypeError("Clips must be changed through add_clip/update_clip/remove_clip")
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                return None
            updated = dataclasses.replace(project, **fields, updated_at=utcnow())
            updated.clips = project.clips
            self._projects[project_id] = updated
            return copy.deepcopy(updated)

    def add_clip(self, project_id: str, clip: Clip) -> Optional[Clip]:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                return None
            new_clip = copy.deepcopy(clip)
            if project.find_clip(new_clip.id) is not None:
                new_clip.id = str(uuid.uuid4())
            project.clips.append(new_clip)
            project.updated_at = utcnow()
            return copy.deepcopy(new_clip)

    def update_clip(self, project_id: str, clip_id: str, **fields: Any) -> Optional[Clip]:
        """
        Apply a partial update to a clip.

        Raises:
            TypeError: If a field name is unknown
        """
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                return None
            index = self._clip_index(project, clip_id)
            if index is None:
                return None
            updated = dataclasses.replace(project.clips[index], **fields)
            project.clips[index] = updated
            project.updated_at = utcnow()
            return copy.deepcopy(updated)

    def remove_clip(self, project_id: str, clip_id: str) -> bool:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                return False
            index = self._clip_index(project, clip_id)
            if index is None:
                return False
            del project.clips[index]
            project.updated_at = utcnow()
            return True

    def start_clip_export(self, project_id: str, clip_id: str) -> Optional[Clip]:
        """
        Move a clip into the exporting state.

        Returns the clip as it was before the transition (so the caller can
        see its previous artifacts), or None if the project/clip is missing.

        Raises:
            ClipBusyError: If the clip is already exporting
        """
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                return None
            index = self._clip_index(project, clip_id)
            if index is None:
                return None
            previous = project.clips[index]
            if previous.status == ClipStatus.EXPORTING:
                raise ClipBusyError(f"Clip {clip_id} is already exporting")
            project.clips[index] = dataclasses.replace(
                previous,
                status=ClipStatus.EXPORTING,
                exported=False,
                export_progress=0,
                export_message="Queued for export...",
                export_error=None,
                **ARTIFACT_FIELDS,
            )
            project.updated_at = utcnow()
            return copy.deepcopy(previous)

    @staticmethod
    def _clip_index(project: Project, clip_id: str) -> Optional[int]:
        return next((i for i, c in enumerate(project.clips) if c.id == clip_id), None)


class ClipBusyError(Exception):
    """Exception raised when a clip already has an export in flight."""
    pass
