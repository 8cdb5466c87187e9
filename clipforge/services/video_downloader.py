"""
Video Downloader Service - Fetches source videos and their metadata with yt-dlp.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

import yt_dlp

from clipforge.config import Settings, get_settings

logger = logging.getLogger(__name__)


DownloadProgressCallback = Callable[[float], None]

SUPPORTED_URL_PATTERNS = [
    re.compile(r"^https?://(www\.|m\.)?youtube\.com/watch\?v=[\w-]{11}"),
    re.compile(r"^https?://youtu\.be/[\w-]{11}"),
    re.compile(r"^https?://(www\.)?youtube\.com/shorts/[\w-]{11}"),
    re.compile(r"^https?://(www\.)?twitch\.tv/.+"),
]

MEDIA_EXTENSIONS = (".mp4", ".mkv", ".webm")

# yt-dlp leftovers that are never the final merged file
PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp.mp4")

PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")

# Prefer a single progressive mp4, fall back to merging the best streams
FORMAT_SELECTOR = "best[ext=mp4][height<=1080]/bestvideo[ext=mp4]+bestaudio[ext=m4a]/best"

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*m")


@dataclass
class VideoInfo:
    """Metadata for a remote video, fetched without downloading."""

    id: str
    title: str
    duration_seconds: float
    duration_str: str
    thumbnail_url: Optional[str] = None
    uploader: Optional[str] = None
    view_count: Optional[int] = None
    upload_date: Optional[str] = None
    description: str = ""
    chapters: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Summary stored on projects and returned by the info endpoint."""
        return {
            "id": self.id,
            "title": self.title,
            "duration": self.duration_seconds,
            "duration_str": self.duration_str,
            "thumbnail": self.thumbnail_url,
            "uploader": self.uploader,
            "view_count": self.view_count,
            "upload_date": self.upload_date,
            "description": self.description,
            "chapters": len(self.chapters),
        }


def is_supported_url(url: str) -> bool:
    """Check whether a URL points at a supported video page (YouTube or Twitch)."""
    return any(pattern.match(url or "") for pattern in SUPPORTED_URL_PATTERNS)


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as M:SS or H:MM:SS."""
    if not seconds:
        return "0:00"
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_progress_hook(status: dict) -> Optional[float]:
    """
    Extract a download percentage (0-100) from a yt-dlp progress hook payload.

    The human-readable `_percent_str` is parsed first; byte counters are used
    when yt-dlp did not render a percentage.
    """
    if status.get("status") == "finished":
        return 100.0
    if status.get("status") != "downloading":
        return None

    percent_str = ANSI_ESCAPE_RE.sub("", str(status.get("_percent_str") or ""))
    match = PERCENT_RE.search(percent_str)
    if match:
        return min(float(match.group(1)), 100.0)

    downloaded = status.get("downloaded_bytes")
    total = status.get("total_bytes") or status.get("total_bytes_estimate")
    if downloaded is not None and total:
        return min(downloaded / total * 100, 100.0)
    return None


def find_largest_media_file(directory: str) -> Optional[str]:
    """
    Return the largest finished media file in a directory.

    yt-dlp may leave separate audio/video streams or partial files next to the
    merged result, and the merged file is always the biggest.
    """
    if not os.path.isdir(directory):
        return None

    candidates = []
    for name in os.listdir(directory):
        lower = name.lower()
        if not lower.endswith(MEDIA_EXTENSIONS) or lower.endswith(PARTIAL_SUFFIXES):
            continue
        path = os.path.join(directory, name)
        if os.path.isfile(path):
            candidates.append((os.path.getsize(path), path))

    if not candidates:
        return None
    return max(candidates)[1]


class VideoDownloaderService:
    """
    Service for downloading source videos with the yt-dlp library.

    Features:
    - Metadata lookup without downloading
    - Best mp4 up to 1080p
    - Percentage progress reporting
    - Largest-file disambiguation of the download directory
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _build_ytdlp_opts(self) -> dict:
        opts = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "socket_timeout": 30,
        }
        if self.settings.ytdlp_proxy:
            opts["proxy"] = self.settings.ytdlp_proxy
        return opts

    async def get_video_info(self, url: str) -> VideoInfo:
        """
        Get video metadata without downloading.

        Raises:
            VideoDownloadError: If yt-dlp cannot resolve the URL
        """
        logger.debug(f"Getting video info for: {url}")

        def do_extract():
            opts = self._build_ytdlp_opts()
            opts["skip_download"] = True
            with yt_dlp.YoutubeDL(opts) as ydl:
                return ydl.extract_info(url, download=False)

        # Run in thread pool to not block event loop
        loop = asyncio.get_running_loop()
        try:
            info = await loop.run_in_executor(None, do_extract)
        except Exception as e:
            raise VideoDownloadError(f"Failed to get video info: {e}")

        if not info:
            raise VideoDownloadError(f"No metadata returned for {url}")

        duration = float(info.get("duration") or 0)
        return VideoInfo(
            id=str(info.get("id", "")),
            title=info.get("title") or "Untitled",
            duration_seconds=duration,
            duration_str=format_duration(duration),
            thumbnail_url=info.get("thumbnail"),
            uploader=info.get("uploader"),
            view_count=info.get("view_count"),
            upload_date=info.get("upload_date"),
            description=(info.get("description") or "")[:500],
            chapters=list(info.get("chapters") or []),
        )

    async def download(
        self,
        url: str,
        output_dir: str,
        on_progress: Optional[DownloadProgressCallback] = None,
    ) -> str:
        """
        Download a video into output_dir.

        Args:
            url: Video page URL
            output_dir: Destination directory (created if missing)
            on_progress: Receives download percentage (0-100) on the event loop

        Returns:
            Path of the largest media file in output_dir

        Raises:
            VideoDownloadError: If yt-dlp fails and no media file was produced
        """
        os.makedirs(output_dir, exist_ok=True)
        loop = asyncio.get_running_loop()
        last_percent = [-1.0]

        def progress_hook(status: dict) -> None:
            percent = parse_progress_hook(status)
            if percent is None or on_progress is None:
                return
            # Merged downloads report each stream from 0 again
            if percent <= last_percent[0]:
                return
            last_percent[0] = percent
            loop.call_soon_threadsafe(on_progress, percent)

        def do_download():
            opts = self._build_ytdlp_opts()
            opts.update({
                "format": FORMAT_SELECTOR,
                "merge_output_format": "mp4",
                "outtmpl": os.path.join(output_dir, "source.%(ext)s"),
                "progress_hooks": [progress_hook],
                "retries": 10,
                "fragment_retries": 10,
                "overwrites": True,
            })
            with yt_dlp.YoutubeDL(opts) as ydl:
                ydl.download([url])

        logger.info(f"Downloading video: {url}")
        download_error: Optional[Exception] = None
        try:
            await loop.run_in_executor(None, do_download)
        except Exception as e:
            download_error = e
            logger.warning(f"yt-dlp reported an error: {str(e)[:200]}")

        video_path = find_largest_media_file(output_dir)
        if video_path is None:
            reason = f": {download_error}" if download_error else ""
            raise VideoDownloadError(f"Download failed{reason}. Check URL and try again.")

        if on_progress is not None:
            on_progress(100.0)

        file_size = os.path.getsize(video_path)
        logger.info(
            f"Video downloaded: {os.path.basename(video_path)} ({file_size / 1024 / 1024:.1f} MB)"
        )
        return video_path


class VideoDownloadError(Exception):
    """Exception raised when video download fails."""
    pass
