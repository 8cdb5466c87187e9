"""
Export Pipeline - Renders one clip into a finished vertical MP4 plus thumbnail.

Stages and their progress bands:
- Trim: 5-40%
- Reframe to 9:16 (optional): 40-70%
- Caption burn (only when captions exist): 70-92%
- Thumbnail: 92-100%

A skipped stage's band is absorbed by the next stage that runs.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from clipforge.config import Settings, get_settings
from clipforge.schemas.responses import ClipExportEvent, ProgressEvent
from clipforge.services.media_operations import MediaOperationsService, remove_files
from clipforge.services.progress_bus import ProgressEventBus
from clipforge.services.project_store import (
    ARTIFACT_FIELDS,
    Clip,
    ClipStatus,
    ProjectStore,
)

logger = logging.getLogger(__name__)


EXPORT_START_PERCENT = 5

# Upper bound of each stage's band
STAGE_END_PERCENT = {
    "trim": 40,
    "reframe": 70,
    "captions": 92,
    "thumbnail": 100,
}

STAGE_MESSAGES = {
    "trim": "Trimming clip...",
    "reframe": "Reframing to 9:16...",
    "captions": "Burning captions...",
    "thumbnail": "Generating thumbnail...",
}


@dataclass
class ExportPaths:
    """Output locations for one clip export."""

    raw: str
    framed: str
    final: str
    thumb: str

    @classmethod
    def for_clip(cls, clips_dir: str, project_id: str, clip_id: str) -> "ExportPaths":
        base = os.path.join(clips_dir, project_id, clip_id)
        return cls(
            raw=f"{base}_raw.mp4",
            framed=f"{base}_framed.mp4",
            final=f"{base}_final.mp4",
            thumb=f"{base}_thumb.jpg",
        )


def plan_stages(clip: Clip) -> list[tuple[str, float, float]]:
    """
    Return (stage, start_percent, end_percent) for the stages this clip needs.
    """
    stages = ["trim"]
    if clip.reframe:
        stages.append("reframe")
    if clip.captions:
        stages.append("captions")
    stages.append("thumbnail")

    plan = []
    start = EXPORT_START_PERCENT
    for stage in stages:
        end = STAGE_END_PERCENT[stage]
        plan.append((stage, start, end))
        start = end
    return plan


class ExportProgress:
    """Writes monotonic export progress to the clip and publishes clip_export events."""

    def __init__(self, store: ProjectStore, bus: ProgressEventBus, project_id: str, clip_id: str):
        self.store = store
        self.bus = bus
        self.project_id = project_id
        self.clip_id = clip_id
        self.percent = 0.0

    def report(self, percent: float, message: str) -> None:
        self.percent = max(self.percent, round(min(percent, 99.0), 1))
        self.store.update_clip(
            self.project_id,
            self.clip_id,
            export_progress=self.percent,
            export_message=message,
        )
        self._publish(ClipExportEvent(
            clip_id=self.clip_id,
            progress=self.percent,
            message=message,
        ))

    def band(self, start: float, end: float, message: str):
        """Progress callback mapping a stage fraction onto [start, end]."""
        return lambda fraction: self.report(start + (end - start) * fraction, message)

    def finish(self, message: str, error: Optional[str] = None) -> None:
        self._publish(ClipExportEvent(
            clip_id=self.clip_id,
            progress=self.percent if error else 100,
            message=message,
            done=True,
            error=error,
        ))

    def _publish(self, event: ClipExportEvent) -> None:
        self.bus.publish(self.project_id, ProgressEvent(clip_export=event))


class ExportPipeline:
    """
    Runs clip exports, bounded by a semaphore.

    The caller moves the clip into the exporting state first
    (ProjectStore.start_clip_export) and passes the clip as it was before,
    so superseded artifacts can be cleaned up after a successful re-export.
    """

    def __init__(
        self,
        store: ProjectStore,
        bus: ProgressEventBus,
        media: MediaOperationsService,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.bus = bus
        self.media = media
        self.settings = settings or get_settings()
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_exports)

    async def run(self, project_id: str, clip_id: str, previous: Optional[Clip] = None) -> None:
        async with self._semaphore:
            await self._export(project_id, clip_id, previous)

    async def _export(self, project_id: str, clip_id: str, previous: Optional[Clip]) -> None:
        project = self.store.get_project(project_id)
        clip = project.find_clip(clip_id) if project else None
        if clip is None:
            logger.warning(f"Clip {clip_id} of project {project_id} vanished before export")
            return

        progress = ExportProgress(self.store, self.bus, project_id, clip_id)
        paths = ExportPaths.for_clip(self.settings.clips_dir, project_id, clip_id)
        logger.info(
            f"Exporting clip {clip_id} ({clip.start:.2f}-{clip.end:.2f}s, "
            f"reframe={clip.reframe}, captions={len(clip.captions)})"
        )

        try:
            if not project.video_path:
                raise ExportError("Source video is not available")
            os.makedirs(os.path.dirname(paths.final), exist_ok=True)

            current = project.video_path
            for stage, start, end in plan_stages(clip):
                message = STAGE_MESSAGES[stage]
                progress.report(start, message)
                on_progress = progress.band(start, end, message)

                if stage == "trim":
                    current = await self.media.trim(
                        current, clip.start, clip.end, paths.raw, on_progress=on_progress
                    )
                elif stage == "reframe":
                    current = await self.media.reframe_vertical(
                        current, paths.framed, on_progress=on_progress
                    )
                elif stage == "captions":
                    current = await self.media.burn_captions(
                        current, clip.captions, clip.caption_style, paths.final,
                        on_progress=on_progress,
                    )
                elif stage == "thumbnail":
                    if current != paths.final:
                        os.replace(current, paths.final)
                        current = paths.final
                    at_second = min(self.settings.thumbnail_at_second, clip.duration / 2)
                    await self.media.thumbnail(current, at_second, paths.thumb)

            file_size = os.path.getsize(paths.final)
        except Exception as e:
            logger.exception(f"Export failed for clip {clip_id}: {e}")
            self.store.update_clip(
                project_id,
                clip_id,
                status=ClipStatus.EXPORT_ERROR,
                exported=False,
                export_message=f"Export failed: {e}",
                export_error=str(e),
                **ARTIFACT_FIELDS,
            )
            progress.finish(f"Export failed: {e}", error=str(e))
            return

        self.store.update_clip(
            project_id,
            clip_id,
            status=ClipStatus.EXPORTED,
            exported=True,
            export_progress=100,
            export_message="Export complete!",
            export_error=None,
            clip_path=paths.final,
            thumb_path=paths.thumb,
            file_size_bytes=file_size,
        )
        progress.finish("Export complete!")
        logger.info(f"Clip {clip_id} exported: {file_size / 1024 / 1024:.1f} MB")

        # Intermediates and superseded artifacts
        stale = [paths.raw, paths.framed]
        if previous is not None:
            stale.extend(
                p for p in (previous.clip_path, previous.thumb_path)
                if p not in (paths.final, paths.thumb)
            )
        remove_files(stale)


class ExportError(Exception):
    """Exception raised when a clip cannot be exported."""
    pass
