"""
Ingest Pipeline - Turns a video URL into a project with ranked clips.

Steps:
1. Metadata lookup (best-effort)
2. Video download (yt-dlp)
3. Probe (ffprobe)
4. AI analysis (Gemini or mock)
5. Clip registration
"""

import logging
import os
from typing import Optional

from clipforge.config import Settings, get_settings
from clipforge.schemas.responses import ClipResponse, ProgressEvent
from clipforge.services.clip_analyzer import ClipAnalyzerService
from clipforge.services.media_operations import MediaOperationsService
from clipforge.services.progress_bus import ProgressEventBus
from clipforge.services.project_store import Clip, ProjectStatus, ProjectStore
from clipforge.services.video_downloader import (
    VideoDownloadError,
    VideoDownloaderService,
)

logger = logging.getLogger(__name__)


# Progress bands (percent of the whole ingestion)
DOWNLOAD_WEIGHT = 0.45
PROBE_DONE_PERCENT = 47
ANALYSIS_WEIGHT = 0.45

# Only completion may report 100
MAX_RUNNING_PERCENT = 99


class IngestProgress:
    """Writes monotonic ingestion progress to the store and the event bus."""

    def __init__(self, store: ProjectStore, bus: ProgressEventBus, project_id: str, start: float = 0):
        self.store = store
        self.bus = bus
        self.project_id = project_id
        self.percent = start

    def report(self, percent: float, message: str) -> None:
        self.percent = max(self.percent, min(percent, MAX_RUNNING_PERCENT))
        self.store.update_project(
            self.project_id,
            status=ProjectStatus.PROCESSING,
            progress=self.percent,
            progress_message=message,
        )
        self.bus.publish(self.project_id, ProgressEvent(
            progress_percent=self.percent,
            message=message,
            status=ProjectStatus.PROCESSING,
        ))


class IngestPipeline:
    """
    Orchestrates ingestion of one project.

    Runs detached from the request; every failure is recorded on the project
    and published as a terminal error event instead of being raised.
    """

    def __init__(
        self,
        store: ProjectStore,
        bus: ProgressEventBus,
        downloader: VideoDownloaderService,
        media: MediaOperationsService,
        analyzer: ClipAnalyzerService,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.bus = bus
        self.downloader = downloader
        self.media = media
        self.analyzer = analyzer
        self.settings = settings or get_settings()

    async def run(self, project_id: str) -> None:
        project = self.store.get_project(project_id)
        if project is None:
            logger.warning(f"Project {project_id} vanished before ingestion started")
            return

        progress = IngestProgress(self.store, self.bus, project_id, start=project.progress)
        logger.info(f"Starting ingestion for project {project_id}: {project.url}")

        try:
            # Step 0: Metadata lookup
            progress.report(1, "Fetching video info...")
            await self._fill_video_info(project_id, project.url, project.video_info)

            # Step 1: Download
            progress.report(2, "Downloading video...")
            video_path = await self.downloader.download(
                project.url,
                os.path.join(self.settings.uploads_dir, project_id),
                on_progress=lambda pct: progress.report(
                    round(pct * DOWNLOAD_WEIGHT), f"Downloading... {round(pct)}%"
                ),
            )
            self.store.update_project(project_id, video_path=video_path)

            # Step 2: Probe
            media = await self.media.probe(video_path)
            if not media.duration_seconds > 0:
                raise IngestError(
                    f"Could not determine video duration (probed {media.duration_seconds}s)"
                )
            self.store.update_project(project_id, duration_seconds=media.duration_seconds)
            progress.report(PROBE_DONE_PERCENT, "Starting AI analysis...")
            logger.info(
                f"Project {project_id}: {media.width}x{media.height}, {media.duration_seconds:.1f}s"
            )

            # Step 3: AI analysis
            analysis = await self.analyzer.analyze(
                video_path,
                media.duration_seconds,
                on_progress=lambda pct, msg: progress.report(
                    PROBE_DONE_PERCENT + round(pct * ANALYSIS_WEIGHT), msg
                ),
            )

            # Step 4: Register clips
            source = "mock" if analysis.used_mock else "ai"
            for candidate in analysis.clips:
                self.store.add_clip(project_id, Clip(
                    title=candidate.title,
                    start=candidate.start,
                    end=candidate.end,
                    caption_style=self.settings.default_caption_style,
                    source=source,
                    hook=candidate.hook,
                    reason=candidate.reason,
                    virality_score=candidate.virality_score,
                    category=candidate.category,
                    transcript=candidate.transcript,
                    captions=candidate.captions,
                    metadata=candidate.metadata,
                ))

            # Step 5: Complete
            project = self.store.update_project(
                project_id,
                status=ProjectStatus.COMPLETED,
                progress=100,
                progress_message="Done!",
                transcript=analysis.transcript,
                used_mock=analysis.used_mock,
                error=None,
            )
            self.bus.publish(project_id, ProgressEvent(
                progress_percent=100,
                message="Done!",
                status=ProjectStatus.COMPLETED,
                clips=[ClipResponse.from_clip(project_id, c) for c in project.clips] if project else [],
            ))
            logger.info(
                f"Project {project_id} completed with {len(analysis.clips)} clips"
                f"{' (mock analysis)' if analysis.used_mock else ''}"
            )

        except Exception as e:
            logger.exception(f"Ingestion failed for project {project_id}: {e}")
            message = f"Error: {e}"
            self.store.update_project(
                project_id,
                status=ProjectStatus.ERROR,
                progress_message=message,
                error=str(e),
            )
            self.bus.publish(project_id, ProgressEvent(
                progress_percent=progress.percent,
                message=message,
                status=ProjectStatus.ERROR,
            ))

    async def _fill_video_info(self, project_id: str, url: str, video_info: Optional[dict]) -> None:
        """Look up title/metadata if the request did not already provide it."""
        if video_info:
            return
        try:
            info = await self.downloader.get_video_info(url)
        except VideoDownloadError as e:
            logger.warning(f"Metadata lookup failed for {url}, continuing: {e}")
            return

        max_seconds = self.settings.max_video_duration_minutes * 60
        if info.duration_seconds > max_seconds:
            raise IngestError(
                f"Video too long ({info.duration_str}). "
                f"Maximum is {self.settings.max_video_duration_minutes} minutes."
            )

        fields = {"video_info": info.to_dict()}
        project = self.store.get_project(project_id)
        if project is not None and project.title == "Untitled Project":
            fields["title"] = info.title
        self.store.update_project(project_id, **fields)


class IngestError(Exception):
    """Exception raised when a video cannot be ingested."""
    pass
