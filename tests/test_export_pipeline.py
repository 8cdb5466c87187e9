"""
Tests for the clip export pipeline.
"""

import asyncio
import os

import pytest

from clipforge.services.caption_generator import CaptionWord
from clipforge.services.export_pipeline import (
    ExportPaths,
    ExportPipeline,
    plan_stages,
)
from clipforge.services.progress_bus import ProgressEventBus
from clipforge.services.project_store import Clip, ClipStatus, ProjectStore
from tests.fakes import FakeMediaOperations

CAPTIONS = [CaptionWord("hello", 0.0, 0.4), CaptionWord("world", 0.4, 0.9)]


@pytest.fixture
def media():
    return FakeMediaOperations()


@pytest.fixture
def source_video(tmp_path):
    path = tmp_path / "source.mp4"
    path.write_bytes(b"source-video")
    return str(path)


def _setup(settings, media, source_video, **clip_fields):
    store = ProjectStore()
    bus = ProgressEventBus(store, queue_size=256)
    project = store.create_project("https://youtu.be/abc123def45")
    store.update_project(project.id, video_path=source_video, duration_seconds=120.0)
    clip_fields.setdefault("title", "Clip")
    clip_fields.setdefault("start", 10.0)
    clip_fields.setdefault("end", 40.0)
    clip = store.add_clip(project.id, Clip(**clip_fields))
    return store, bus, ExportPipeline(store, bus, media, settings), project.id, clip.id


def _export(store, bus, pipeline, project_id, clip_id):
    """Start and run one export, returning the clip_export events seen."""

    async def scenario():
        subscription = bus.subscribe(project_id)
        await subscription.get(0.1)  # snapshot
        previous = store.start_clip_export(project_id, clip_id)
        await pipeline.run(project_id, clip_id, previous)
        events = []
        while True:
            event = await subscription.get(timeout=0.01)
            if event is None:
                break
            events.append(event.clip_export)
        bus.unsubscribe(subscription)
        return events

    events = asyncio.run(scenario())
    return store.get_project(project_id).find_clip(clip_id), events


class TestPlanStages:
    """Tests for stage planning."""

    def test_all_stages(self):
        clip = Clip(title="c", start=0, end=10, captions=CAPTIONS)
        assert plan_stages(clip) == [
            ("trim", 5, 40),
            ("reframe", 40, 70),
            ("captions", 70, 92),
            ("thumbnail", 92, 100),
        ]

    def test_skipped_bands_are_absorbed(self):
        clip = Clip(title="c", start=0, end=10, reframe=False)
        assert plan_stages(clip) == [("trim", 5, 40), ("thumbnail", 40, 100)]

    def test_no_captions(self):
        clip = Clip(title="c", start=0, end=10)
        assert [stage for stage, _, _ in plan_stages(clip)] == ["trim", "reframe", "thumbnail"]


class TestExportPaths:
    """Tests for artifact locations."""

    def test_paths_are_per_clip(self):
        paths = ExportPaths.for_clip("/clips", "p1", "c1")
        assert paths.final == os.path.join("/clips", "p1", "c1") + "_final.mp4"
        assert paths.thumb == os.path.join("/clips", "p1", "c1") + "_thumb.jpg"
        assert paths.raw != paths.framed


class TestExport:
    """Tests for running exports."""

    def test_full_export(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video, captions=CAPTIONS)

        clip, events = _export(store, bus, pipeline, pid, cid)

        assert media.operations() == ["trim", "reframe", "captions", "thumbnail_at", "thumbnail"]
        assert clip.status == ClipStatus.EXPORTED
        assert clip.exported is True
        assert clip.export_progress == 100
        assert clip.export_error is None
        assert clip.clip_path.endswith(f"{cid}_final.mp4")
        assert clip.thumb_path.endswith(f"{cid}_thumb.jpg")
        assert clip.file_size_bytes == len(b"captioned-video")
        assert os.path.exists(clip.clip_path)
        assert os.path.exists(clip.thumb_path)

        paths = ExportPaths.for_clip(settings.clips_dir, pid, cid)
        assert not os.path.exists(paths.raw)
        assert not os.path.exists(paths.framed)

        assert events[-1].done is True
        assert events[-1].progress == 100
        assert events[-1].error is None

    def test_progress_bands(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video, captions=CAPTIONS)

        _, events = _export(store, bus, pipeline, pid, cid)

        running = [e.progress for e in events if not e.done]
        assert running == sorted(running)
        assert running[0] == 5
        assert max(running) < 100
        for boundary in (40, 70, 92):
            assert boundary in running

    def test_skipped_stages(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video, reframe=False)

        clip, events = _export(store, bus, pipeline, pid, cid)

        assert media.operations() == ["trim", "thumbnail_at", "thumbnail"]
        assert clip.status == ClipStatus.EXPORTED
        assert clip.clip_path.endswith(f"{cid}_final.mp4")
        assert clip.file_size_bytes == len(b"trimmed-video")
        assert "Reframing to 9:16..." not in [e.message for e in events]
        assert events[-2].message == "Generating thumbnail..."

    def test_thumbnail_time_for_short_clip(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video, start=0.0, end=1.0)

        _export(store, bus, pipeline, pid, cid)

        assert ("thumbnail_at", 0.5) in media.calls

    def test_thumbnail_time_for_long_clip(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video)

        _export(store, bus, pipeline, pid, cid)

        assert ("thumbnail_at", settings.thumbnail_at_second) in media.calls

    def test_reexport_replaces_artifacts(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video)
        first, _ = _export(store, bus, pipeline, pid, cid)

        stale_thumb = os.path.join(settings.clips_dir, pid, "stale_thumb.jpg")
        with open(stale_thumb, "wb") as f:
            f.write(b"old")
        store.update_clip(pid, cid, thumb_path=stale_thumb, captions=CAPTIONS)

        second, _ = _export(store, bus, pipeline, pid, cid)

        assert second.status == ClipStatus.EXPORTED
        assert second.clip_path == first.clip_path
        assert second.file_size_bytes == len(b"captioned-video")
        assert os.path.exists(second.clip_path)
        assert not os.path.exists(stale_thumb)

    def test_failure_marks_clip(self, settings, source_video):
        media = FakeMediaOperations(fail_on="reframe")
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video)

        clip, events = _export(store, bus, pipeline, pid, cid)

        assert clip.status == ClipStatus.EXPORT_ERROR
        assert clip.exported is False
        assert "FFmpeg reframe failed" in clip.export_error
        assert clip.clip_path is None
        assert clip.thumb_path is None
        assert clip.file_size_bytes is None
        assert events[-1].done is True
        assert events[-1].error == clip.export_error
        assert events[-1].progress < 100

    def test_missing_source(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video)
        store.update_project(pid, video_path=None)

        clip, _ = _export(store, bus, pipeline, pid, cid)

        assert clip.status == ClipStatus.EXPORT_ERROR
        assert clip.export_error == "Source video is not available"
        assert media.calls == []

    def test_other_clips_untouched(self, settings, media, source_video):
        store, bus, pipeline, pid, cid = _setup(settings, media, source_video)
        sibling = store.add_clip(pid, Clip(title="Sibling", start=0, end=5))

        _export(store, bus, pipeline, pid, cid)

        untouched = store.get_project(pid).find_clip(sibling.id)
        assert untouched.status == ClipStatus.READY
        assert untouched.export_progress == 0
