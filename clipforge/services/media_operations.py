"""
Media Operations Service - FFmpeg/FFprobe wrappers for probing, trimming,
vertical reframing, caption burning, thumbnails and audio extraction.
"""

import asyncio
import json
import logging
import os
import re
import subprocess
import sys
import tempfile
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from clipforge.config import Settings, get_settings
from clipforge.services.caption_generator import CaptionWord, render_ass
from clipforge.services.geometry import crop_for

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[float], None]

# Lines emitted by `-progress pipe:1` look like `key=value`
PROGRESS_LINE_RE = re.compile(r"^[a-z0-9_]+=\S*$")

# Progress never reports completion until the process has exited
MAX_RUNNING_FRACTION = 0.99


@dataclass
class MediaProbe:
    """Basic stream information for a media file."""

    width: int
    height: int
    duration_seconds: float


def parse_progress_line(line: str, expected_duration: float) -> Optional[float]:
    """
    Convert one ffmpeg `-progress` line into a completion fraction.

    Only `out_time_us` / `out_time_ms` lines carry a position (both are in
    microseconds). Returns None for any other line.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    if expected_duration <= 0:
        return None
    try:
        position_seconds = int(value) / 1_000_000
    except ValueError:
        return None
    fraction = position_seconds / expected_duration
    return max(0.0, min(fraction, MAX_RUNNING_FRACTION))


class MediaOperationsService:
    """
    Service for transcoding operations used by ingestion and export.

    Every long-running operation accepts an optional progress callback which
    receives a fraction in [0, 1] on the event loop thread.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def probe(self, path: str) -> MediaProbe:
        """Get width, height and duration using ffprobe."""
        # Use run_in_executor for Windows compatibility
        loop = asyncio.get_running_loop()
        returncode, stdout, stderr = await loop.run_in_executor(
            None, self._run_ffprobe_sync, path
        )

        if returncode != 0:
            raise MediaOperationError(
                f"ffprobe failed for {os.path.basename(path)}: {stderr.decode(errors='replace')[:200]}"
            )

        try:
            info = json.loads(stdout.decode())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MediaOperationError(f"Failed to parse ffprobe output: {e}")

        video_stream = next(
            (s for s in info.get("streams", []) if s.get("codec_type") == "video"),
            None,
        )
        if video_stream is None:
            raise MediaOperationError(f"No video stream found in {os.path.basename(path)}")

        format_info = info.get("format", {})
        try:
            duration = float(format_info.get("duration") or video_stream.get("duration") or 0)
        except ValueError:
            duration = 0.0

        return MediaProbe(
            width=int(video_stream.get("width", 0)),
            height=int(video_stream.get("height", 0)),
            duration_seconds=duration,
        )

    async def trim(
        self,
        path: str,
        start_seconds: float,
        end_seconds: float,
        output_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Cut [start, end) out of the source with a full re-encode.

        Stream copy would start the output on the previous keyframe, so the
        segment is always re-encoded to be playable from frame zero.
        """
        duration = end_seconds - start_seconds
        if duration <= 0:
            raise MediaOperationError(f"Invalid trim range: {start_seconds}-{end_seconds}")

        args = [
            "-ss", f"{start_seconds:.3f}",
            "-i", path,
            "-t", f"{duration:.3f}",
            *self._video_encode_args(),
            "-c:a", "aac",
            "-avoid_negative_ts", "make_zero",
            output_path,
        ]
        await self._run_ffmpeg(args, duration, on_progress, operation="trim")
        return output_path

    async def reframe_vertical(
        self,
        path: str,
        output_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Reframe to 9:16 with a sharp center crop over a blurred full-bleed background.
        """
        media = await self.probe(path)
        crop = crop_for(media.width, media.height)
        target_w = self.settings.target_output_width
        target_h = self.settings.target_output_height

        filter_complex = ";".join([
            # Main content: crop and scale
            f"[0:v]crop={crop.width}:{crop.height}:{crop.x}:{crop.y},"
            f"scale={target_w}:{target_h}:force_original_aspect_ratio=decrease[main]",
            # Blurred background: scale to fill, blur
            f"[0:v]scale={target_w}:{target_h}:force_original_aspect_ratio=increase,"
            f"crop={target_w}:{target_h},{self.settings.background_blur}[bg]",
            # Overlay main on bg
            "[bg][main]overlay=(W-w)/2:(H-h)/2[out]",
        ])

        logger.debug(
            f"Reframing {media.width}x{media.height} with crop "
            f"{crop.width}x{crop.height}+{crop.x}+{crop.y}"
        )

        args = [
            "-i", path,
            "-filter_complex", filter_complex,
            "-map", "[out]",
            "-map", "0:a?",
            *self._video_encode_args(),
            "-c:a", "aac",
            output_path,
        ]
        await self._run_ffmpeg(args, media.duration_seconds, on_progress, operation="reframe")
        return output_path

    async def burn_captions(
        self,
        path: str,
        captions: Iterable[CaptionWord],
        style_name: Optional[str],
        output_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Render captions to a temporary ASS file and burn them into the video."""
        media = await self.probe(path)
        ass_content = render_ass(captions, style_name)

        output_dir = os.path.dirname(os.path.abspath(output_path))
        os.makedirs(output_dir, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", suffix=".ass", dir=output_dir, delete=False, encoding="utf-8"
        ) as f:
            f.write(ass_content)
            ass_path = f.name

        try:
            args = [
                "-i", path,
                "-vf", f"ass={self._escape_filter_path(ass_path)}",
                *self._video_encode_args(),
                "-c:a", "copy",
                output_path,
            ]
            await self._run_ffmpeg(args, media.duration_seconds, on_progress, operation="caption burn")
        finally:
            _remove_quietly(ass_path)

        return output_path

    async def thumbnail(self, path: str, at_second: float, output_path: str) -> str:
        """Extract a single JPEG frame."""
        args = [
            "-ss", f"{max(0.0, at_second):.3f}",
            "-i", path,
            "-frames:v", "1",
            "-vf", f"scale={self.settings.thumbnail_width}:-2",
            "-q:v", "2",
            output_path,
        ]
        await self._run_ffmpeg(args, 0, None, operation="thumbnail")
        if not os.path.isfile(output_path):
            raise MediaOperationError(f"Thumbnail was not produced at {at_second:.2f}s")
        return output_path

    async def extract_audio(
        self,
        path: str,
        output_path: str,
        duration_seconds: float = 0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Extract a low-bitrate mono MP3 track (enough for speech)."""
        args = [
            "-i", path,
            "-vn",
            "-acodec", "libmp3lame",
            "-ar", str(self.settings.analysis_audio_sample_rate),
            "-ac", "1",
            "-b:a", self.settings.analysis_audio_bitrate,
            output_path,
        ]
        await self._run_ffmpeg(args, duration_seconds, on_progress, operation="audio extraction")
        return output_path

    def _video_encode_args(self) -> list[str]:
        return [
            "-c:v", "libx264",
            "-preset", self.settings.ffmpeg_preset,
            "-crf", str(self.settings.ffmpeg_crf),
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
        ]

    async def _run_ffmpeg(
        self,
        args: list[str],
        expected_duration: float,
        on_progress: Optional[ProgressCallback],
        operation: str,
    ) -> None:
        """Run ffmpeg in the default executor, forwarding progress to the event loop."""
        loop = asyncio.get_running_loop()

        def report(fraction: float) -> None:
            if on_progress is not None:
                loop.call_soon_threadsafe(on_progress, fraction)

        cmd = [
            "ffmpeg", "-y", "-hide_banner", "-nostats",
            "-loglevel", "error",
            "-progress", "pipe:1",
            *args,
        ]
        logger.debug(f"Running: {' '.join(cmd[:14])}...")

        returncode, error_tail = await loop.run_in_executor(
            None, self._run_with_progress, cmd, expected_duration, report
        )

        if returncode != 0:
            raise MediaOperationError(
                f"FFmpeg {operation} failed (exit {returncode}): {error_tail[-1000:] or 'Unknown error'}"
            )

        if on_progress is not None:
            on_progress(1.0)

    @staticmethod
    def _run_with_progress(
        cmd: list[str],
        expected_duration: float,
        report: ProgressCallback,
    ) -> tuple[int, str]:
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except FileNotFoundError:
            raise MediaOperationError(f"{cmd[0]} not found in PATH")

        tail: deque[str] = deque(maxlen=20)
        last_fraction = -1.0

        with proc:
            for line in proc.stdout:
                line = line.strip()
                if not line:
                    continue
                if PROGRESS_LINE_RE.match(line):
                    fraction = parse_progress_line(line, expected_duration)
                    if fraction is not None and fraction > last_fraction:
                        last_fraction = fraction
                        report(fraction)
                    continue
                tail.append(line)
            proc.wait()

        return proc.returncode, "\n".join(tail)

    @staticmethod
    def _run_ffprobe_sync(path: str) -> tuple[int, bytes, bytes]:
        """Run ffprobe synchronously (for use with run_in_executor)."""
        cmd = [
            "ffprobe",
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            path,
        ]
        try:
            result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except FileNotFoundError:
            raise MediaOperationError("ffprobe not found in PATH")
        return result.returncode, result.stdout, result.stderr

    @staticmethod
    def _escape_filter_path(path: str) -> str:
        """
        Escape file path for FFmpeg filter usage.

        Backslashes become forward slashes, drive-letter colons and filter
        metacharacters are escaped, and the result is single-quoted.
        """
        escaped = path.replace("\\", "/")

        # On Windows, escape the drive letter colon (C: -> C\:)
        if sys.platform == "win32" and len(escaped) >= 2 and escaped[1] == ":":
            escaped = escaped[0] + "\\:" + escaped[2:]

        escaped = escaped.replace("'", "'\\''")
        escaped = escaped.replace("[", "\\[")
        escaped = escaped.replace("]", "\\]")
        return f"'{escaped}'"


def remove_files(paths: Iterable[Optional[str]]) -> None:
    """Best-effort deletion of media files that are no longer referenced."""
    for path in paths:
        if path:
            _remove_quietly(path)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")


class MediaOperationError(Exception):
    """Exception raised when an FFmpeg/FFprobe operation fails."""
    pass
