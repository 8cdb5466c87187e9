"""
Pytest configuration and fixtures.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from clipforge.config import Settings  # noqa: E402
from tests.fakes import FakeDownloader, FakeMediaOperations  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at temp directories, mock analysis without delays."""
    return Settings(
        gemini_api_key=None,
        clipforge_api_key=None,
        uploads_dir=str(tmp_path / "uploads"),
        clips_dir=str(tmp_path / "clips"),
        mock_step_delay_seconds=0,
    )


@pytest.fixture
def fake_media():
    return FakeMediaOperations()


@pytest.fixture
def fake_downloader():
    return FakeDownloader()
