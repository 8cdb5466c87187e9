"""
Tests for the in-memory project store.
"""

import time

import pytest

from clipforge.services.project_store import (
    Clip,
    ClipBusyError,
    ClipStatus,
    ProjectStatus,
    ProjectStore,
)


@pytest.fixture
def store():
    return ProjectStore()


class TestProjects:
    """Tests for project CRUD."""

    def test_create_defaults(self, store):
        project = store.create_project("https://youtu.be/dQw4w9WgXcQ")
        assert project.user_id == "anonymous"
        assert project.title == "Untitled Project"
        assert project.status == ProjectStatus.QUEUED
        assert project.progress == 0
        assert project.clips == []

    def test_title_from_video_info(self, store):
        project = store.create_project("u", video_info={"title": "From Info"})
        assert project.title == "From Info"

    def test_get_returns_copies(self, store):
        project = store.create_project("u")
        project.title = "changed locally"
        assert store.get_project(project.id).title == "Untitled Project"

    def test_get_missing(self, store):
        assert store.get_project("nope") is None

    def test_list_newest_first_and_filter(self, store):
        first = store.create_project("u1", user_id="alice")
        time.sleep(0.001)
        second = store.create_project("u2", user_id="bob")
        time.sleep(0.001)
        third = store.create_project("u3", user_id="alice")

        assert [p.id for p in store.list_projects()] == [third.id, second.id, first.id]
        assert [p.id for p in store.list_projects("alice")] == [third.id, first.id]

    def test_update_touches_updated_at(self, store):
        project = store.create_project("u")
        time.sleep(0.001)
        updated = store.update_project(project.id, progress=40, progress_message="Halfway")
        assert updated.progress == 40
        assert updated.updated_at > project.updated_at

    def test_update_unknown_field(self, store):
        project = store.create_project("u")
        with pytest.raises(TypeError):
            store.update_project(project.id, not_a_field=1)

    def test_update_rejects_clips(self, store):
        project = store.create_project("u")
        with pytest.raises(TypeError):
            store.update_project(project.id, clips=[])

    def test_update_keeps_clips(self, store):
        project = store.create_project("u")
        store.add_clip(project.id, Clip(title="c", start=0, end=5))
        store.update_project(project.id, status=ProjectStatus.PROCESSING)
        assert len(store.get_project(project.id).clips) == 1

    def test_update_missing(self, store):
        assert store.update_project("nope", progress=1) is None


class TestClips:
    """Tests for clip operations."""

    def test_add_and_update_clip(self, store):
        project = store.create_project("u")
        clip = store.add_clip(project.id, Clip(title="c", start=1, end=6))

        updated = store.update_clip(project.id, clip.id, title="renamed", end=8)

        assert updated.title == "renamed"
        assert updated.duration == 7
        assert store.get_project(project.id).clips[0].title == "renamed"

    def test_add_clip_to_missing_project(self, store):
        assert store.add_clip("nope", Clip(title="c", start=0, end=1)) is None

    def test_duplicate_clip_id_is_replaced(self, store):
        project = store.create_project("u")
        clip = Clip(title="c", start=0, end=1)
        first = store.add_clip(project.id, clip)
        second = store.add_clip(project.id, clip)
        assert first.id != second.id

    def test_remove_clip_keeps_siblings(self, store):
        project = store.create_project("u")
        keep_a = store.add_clip(project.id, Clip(title="a", start=0, end=1))
        drop = store.add_clip(project.id, Clip(title="b", start=1, end=2))
        keep_c = store.add_clip(project.id, Clip(title="c", start=2, end=3))

        assert store.remove_clip(project.id, drop.id) is True

        remaining = store.get_project(project.id).clips
        assert [c.id for c in remaining] == [keep_a.id, keep_c.id]
        assert store.remove_clip(project.id, drop.id) is False

    def test_update_missing_clip(self, store):
        project = store.create_project("u")
        assert store.update_clip(project.id, "nope", title="x") is None


class TestStartClipExport:
    """Tests for the atomic export transition."""

    def test_transition_clears_artifacts_and_returns_previous(self, store):
        project = store.create_project("u")
        clip = store.add_clip(project.id, Clip(title="c", start=0, end=5))
        store.update_clip(
            project.id, clip.id,
            status=ClipStatus.EXPORTED, exported=True,
            clip_path="/clips/old.mp4", thumb_path="/clips/old.jpg", file_size_bytes=10,
        )

        previous = store.start_clip_export(project.id, clip.id)

        assert previous.clip_path == "/clips/old.mp4"
        current = store.get_project(project.id).clips[0]
        assert current.status == ClipStatus.EXPORTING
        assert current.exported is False
        assert current.clip_path is None
        assert current.thumb_path is None
        assert current.file_size_bytes is None

    def test_second_export_is_rejected(self, store):
        project = store.create_project("u")
        clip = store.add_clip(project.id, Clip(title="c", start=0, end=5))
        store.start_clip_export(project.id, clip.id)

        with pytest.raises(ClipBusyError):
            store.start_clip_export(project.id, clip.id)

    def test_missing_clip(self, store):
        project = store.create_project("u")
        assert store.start_clip_export(project.id, "nope") is None
