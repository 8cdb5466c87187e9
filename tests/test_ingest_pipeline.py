"""
Tests for the ingest pipeline using fake adapters and mock analysis.
"""

import asyncio

import pytest

from clipforge.services.clip_analyzer import ClipAnalyzerService
from clipforge.services.ingest_pipeline import IngestPipeline
from clipforge.services.progress_bus import ProgressEventBus
from clipforge.services.project_store import ClipStatus, ProjectStatus, ProjectStore
from tests.fakes import FakeDownloader, FakeMediaOperations


def _pipeline(settings, downloader=None, media=None):
    store = ProjectStore()
    bus = ProgressEventBus(store, queue_size=256)
    media = media or FakeMediaOperations()
    analyzer = ClipAnalyzerService(media=media, settings=settings)
    pipeline = IngestPipeline(store, bus, downloader or FakeDownloader(), media, analyzer, settings)
    return store, bus, pipeline


def _run_collecting(store, bus, pipeline, url="https://www.youtube.com/watch?v=abc123def45", **kwargs):
    """Run ingestion for a fresh project and return (project, events)."""
    project = store.create_project(url, **kwargs)

    async def scenario():
        subscription = bus.subscribe(project.id)
        await pipeline.run(project.id)
        events = []
        while True:
            event = await subscription.get(timeout=0.01)
            if event is None:
                return events
            events.append(event)

    events = asyncio.run(scenario())
    return store.get_project(project.id), events


class TestSuccessfulIngestion:
    """Tests for the happy path."""

    def test_project_completes_with_ready_clips(self, settings):
        store, bus, pipeline = _pipeline(settings)

        project, _ = _run_collecting(store, bus, pipeline)

        assert project.status == ProjectStatus.COMPLETED
        assert project.progress == 100
        assert project.progress_message == "Done!"
        assert project.used_mock is True
        assert project.duration_seconds == 120.0
        assert project.video_path.endswith("source.mp4")
        assert project.error is None
        assert 1 <= len(project.clips) <= settings.max_candidate_clips
        for clip in project.clips:
            assert clip.status == ClipStatus.READY
            assert clip.source == "mock"
            assert clip.caption_style == settings.default_caption_style
            assert 0 <= clip.start < clip.end <= 120.0

    def test_title_and_info_from_lookup(self, settings):
        store, bus, pipeline = _pipeline(settings)

        project, _ = _run_collecting(store, bus, pipeline)

        assert project.title == "Test Video"
        assert project.video_info["duration"] == 120.0
        assert project.video_info["chapters"] == 1

    def test_explicit_title_is_kept(self, settings):
        store, bus, pipeline = _pipeline(settings)

        project, _ = _run_collecting(store, bus, pipeline, title="My Title")

        assert project.title == "My Title"

    def test_progress_is_monotonic_and_ends_at_100(self, settings):
        store, bus, pipeline = _pipeline(settings)

        _, events = _run_collecting(store, bus, pipeline)

        percents = [e.progress_percent for e in events]
        assert percents == sorted(percents)
        assert percents[-1] == 100
        assert 100 not in percents[:-1]

        final = events[-1]
        assert final.status == ProjectStatus.COMPLETED
        assert final.clips and all(c.status == ClipStatus.READY for c in final.clips)

    def test_download_and_analysis_bands(self, settings):
        store, bus, pipeline = _pipeline(settings)

        _, events = _run_collecting(store, bus, pipeline)

        messages = {e.message: e.progress_percent for e in events}
        assert messages["Downloading... 100%"] == 45
        assert messages["Starting AI analysis..."] == 47
        assert messages["Analysis complete!"] == 92

    def test_clips_are_ranked(self, settings):
        store, bus, pipeline = _pipeline(settings)

        project, _ = _run_collecting(store, bus, pipeline)

        scores = [c.virality_score for c in project.clips]
        assert scores == sorted(scores, reverse=True)

    def test_metadata_failure_is_not_fatal(self, settings):
        store, bus, pipeline = _pipeline(settings, downloader=FakeDownloader(fail_info=True))

        project, _ = _run_collecting(store, bus, pipeline)

        assert project.status == ProjectStatus.COMPLETED
        assert project.title == "Untitled Project"
        assert project.video_info is None


class TestFailedIngestion:
    """Tests for failures recorded on the project."""

    def test_download_failure(self, settings):
        store, bus, pipeline = _pipeline(settings, downloader=FakeDownloader(fail_download=True))

        project, events = _run_collecting(store, bus, pipeline)

        assert project.status == ProjectStatus.ERROR
        assert "Download failed" in project.error
        assert project.progress_message.startswith("Error: ")
        assert project.progress < 100
        assert project.clips == []
        assert events[-1].status == ProjectStatus.ERROR
        assert events[-1].progress_percent == project.progress

    def test_probe_failure(self, settings):
        media = FakeMediaOperations(fail_on="probe")
        store, bus, pipeline = _pipeline(settings, media=media)

        project, _ = _run_collecting(store, bus, pipeline)

        assert project.status == ProjectStatus.ERROR
        assert project.error == "ffprobe failed"
        assert project.video_path is not None
        assert project.clips == []

    @pytest.mark.parametrize("duration", [0.0, -1.0, float("nan")])
    def test_unusable_duration(self, settings, duration):
        media = FakeMediaOperations(duration=duration)
        store, bus, pipeline = _pipeline(settings, media=media)

        project, events = _run_collecting(store, bus, pipeline)

        assert project.status == ProjectStatus.ERROR
        assert "Could not determine video duration" in project.error
        assert project.duration_seconds is None
        assert project.clips == []
        assert "extract_audio" not in media.operations()
        assert events[-1].status == ProjectStatus.ERROR

    def test_video_too_long(self, settings):
        downloader = FakeDownloader(duration=settings.max_video_duration_minutes * 60 + 1)
        store, bus, pipeline = _pipeline(settings, downloader=downloader)

        project, _ = _run_collecting(store, bus, pipeline)

        assert project.status == ProjectStatus.ERROR
        assert "Video too long" in project.error
        assert downloader.downloads == []

    def test_missing_project_is_ignored(self, settings):
        store, bus, pipeline = _pipeline(settings)
        asyncio.run(pipeline.run("missing"))
        assert store.list_projects() == []


@pytest.mark.parametrize("duration", [5.0, 30.0, 3600.0])
def test_clips_fit_any_duration(settings, duration):
    media = FakeMediaOperations(duration=duration)
    store, bus, pipeline = _pipeline(settings, media=media)

    project, _ = _run_collecting(store, bus, pipeline)

    assert project.clips
    for clip in project.clips:
        assert 0 <= clip.start < clip.end <= duration
