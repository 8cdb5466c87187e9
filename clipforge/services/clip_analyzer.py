"""
Clip Analyzer Service - Uses Gemini to transcribe audio and find viral segments.

Without a Gemini key the service runs a deterministic mock analysis so the
rest of the pipeline can be exercised locally.
"""

import asyncio
import hashlib
import json
import logging
import math
import os
import random
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from google import genai
from google.genai import types

from clipforge.config import Settings, get_settings
from clipforge.services.caption_generator import CaptionWord
from clipforge.services.fallback import (
    extract_balanced_fragment,
    first_successful,
    first_successful_async,
)
from clipforge.services.media_operations import MediaOperationsService
from clipforge.services.project_store import ClipMetadata

logger = logging.getLogger(__name__)


# Receives (percent 0-100, message)
AnalysisProgressCallback = Callable[[float, str], None]

VIRAL_CATEGORIES = {
    "educational",
    "emotional",
    "funny",
    "inspiring",
    "shocking",
    "controversial",
}

MOCK_TEMPLATES = [
    {"title": "Mind-Blowing Fact You Never Knew", "category": "educational", "score": 94},
    {"title": "This Changed Everything", "category": "inspiring", "score": 88},
    {"title": "Wait For The Twist...", "category": "shocking", "score": 91},
    {"title": "The Part Everyone's Talking About", "category": "controversial", "score": 97},
    {"title": "You Won't Believe This Worked", "category": "funny", "score": 85},
]

MOCK_HOOK = "This is the part where everything changes..."
MOCK_HASHTAGS = ["#viral", "#trending", "#shorts"]

# Status codes that move on to the next model in the fallback chain
RETRYABLE_STATUS_CODES = (429, 404)

SAFETY_CATEGORIES = [
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
]

ANALYSIS_PROMPT = """You are a viral short-form video expert. I will give you an audio track from a long video.

Your tasks:
1. TRANSCRIBE the audio completely with timestamps (every ~5 seconds, format: [MM:SS])
2. FIND the top {max_clips} most viral-worthy segments (15-60 seconds each)

For each clip, return:
- start_sec: start time in seconds (number)
- end_sec: end time in seconds (number, max {duration})
- title: catchy title (max 8 words)
- hook: the opening hook line the viewer hears
- reason: why this is viral-worthy
- engagementScore: 1-100 virality prediction
- viralType: one of [{categories}]
- transcript: the words spoken in this segment

Rules:
- Clips must NOT overlap
- Clips must be 15-60 seconds
- Prioritize: hooks, surprises, strong emotions, humor, controversial takes
- The very first word/phrase must hook the viewer immediately

Respond ONLY with valid JSON:
{{
  "transcript": "full transcript with [MM:SS] timestamps...",
  "clips": [
    {{ "start_sec": 12, "end_sec": 45, "title": "...", "hook": "...", "reason": "...", "engagementScore": 92, "viralType": "educational", "transcript": "..." }}
  ]
}}"""

METADATA_PROMPT = """For this viral video clip:
Title: "{title}"
Type: {category}
Transcript: "{transcript}"

Generate:
1. 3 punchy viral title variations (emotional, clickbait, curiosity-driven)
2. {max_hashtags} trending hashtags for TikTok/Reels/Shorts
3. A hook caption under 100 characters

Respond with JSON:
{{
  "titles": ["title1", "title2", "title3"],
  "hashtags": ["#tag1", "#tag2", ...],
  "caption": "short hook caption"
}}"""


@dataclass
class CandidateClip:
    """A clip proposed by analysis, before it is registered on a project."""

    title: str
    start: float
    end: float
    hook: Optional[str] = None
    reason: Optional[str] = None
    virality_score: Optional[float] = None
    category: Optional[str] = None
    transcript: Optional[str] = None
    captions: list[CaptionWord] = field(default_factory=list)
    metadata: Optional[ClipMetadata] = None


@dataclass
class AnalysisResult:
    """Outcome of analyzing one source video."""

    clips: list[CandidateClip]
    transcript: Optional[str] = None
    used_mock: bool = False


def spread_word_captions(
    transcript: Optional[str],
    start_seconds: float,
    end_seconds: float,
) -> list[CaptionWord]:
    """
    Spread the words of a clip transcript evenly over the clip duration.

    Times are relative to the clip start; word i covers
    [i * slot, (i + 1) * slot] where slot = duration / word_count.
    """
    words = (transcript or "").split()
    duration = end_seconds - start_seconds
    if not words or duration <= 0:
        return []

    slot = duration / len(words)
    return [
        CaptionWord(word=word, start=round(i * slot, 3), end=round((i + 1) * slot, 3))
        for i, word in enumerate(words)
    ]


def validate_candidates(
    raw_clips: Any,
    duration_seconds: float,
    max_clips: int = 5,
) -> list[CandidateClip]:
    """
    Turn raw model output into well-formed candidates.

    Entries with missing or non-numeric bounds are dropped, ends are clamped
    to the source duration, and anything left with end <= start is dropped.
    The survivors are ranked by virality score and capped.
    """
    if not isinstance(raw_clips, list):
        return []

    candidates: list[CandidateClip] = []
    for raw in raw_clips:
        if not isinstance(raw, dict):
            continue

        start = _as_float(raw.get("start_sec", raw.get("start")))
        end = _as_float(raw.get("end_sec", raw.get("end")))
        if start is None or end is None:
            continue

        start = max(0.0, start)
        if duration_seconds > 0:
            end = min(end, duration_seconds)
        if end <= start:
            logger.debug(f"Dropping candidate with empty range {start}-{end}")
            continue

        category = str(raw.get("viralType") or raw.get("category") or "").lower()
        score = _as_float(raw.get("engagementScore", raw.get("virality_score")))
        if score is not None:
            score = max(1.0, min(score, 100.0))

        candidates.append(CandidateClip(
            title=str(raw.get("title") or "Untitled Clip").strip(),
            start=start,
            end=end,
            hook=raw.get("hook"),
            reason=raw.get("reason"),
            virality_score=score,
            category=category if category in VIRAL_CATEGORIES else None,
            transcript=raw.get("transcript"),
        ))

    candidates.sort(key=lambda c: c.virality_score or 0, reverse=True)
    return candidates[:max_clips]


def parse_model_json(text: str) -> Any:
    """
    Parse a model response as JSON.

    Strict parsing is tried first, then the first balanced {...} / [...]
    fragment in the text.

    Raises:
        ClipAnalysisError: If neither yields valid JSON
    """
    def parse_fragment(raw: str) -> Any:
        fragment = extract_balanced_fragment(raw)
        if fragment is None:
            raise ValueError("no balanced JSON fragment")
        return json.loads(fragment)

    return first_successful(
        [json.loads, parse_fragment],
        lambda parse: parse(text or ""),
        is_retryable=lambda e: isinstance(e, ValueError),
        exhausted=lambda e: ClipAnalysisError(
            f"Gemini returned invalid JSON: {(text or '')[:200]}"
        ),
    )


def is_retryable_model_error(error: BaseException) -> bool:
    """Quota and model-not-found errors move on to the next model."""
    code = getattr(error, "code", None) or getattr(error, "status_code", None)
    if code in RETRYABLE_STATUS_CODES:
        return True
    message = str(error).lower()
    return "429" in message or "quota" in message or "not found" in message


class ClipAnalyzerService:
    """
    Service for finding viral clip candidates in a source video.

    Features:
    - Single Gemini call for transcript + ranked segments
    - Per-clip titles, hashtags and caption (concurrent, degrades gracefully)
    - Model fallback chain on quota / not-found errors
    - Deterministic mock analysis when no API key is configured
    """

    def __init__(
        self,
        media: Optional[MediaOperationsService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.media = media or MediaOperationsService(self.settings)
        self._client: Optional[genai.Client] = None

    @property
    def uses_mock(self) -> bool:
        return not self.settings.gemini_configured

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                api_key=self.settings.gemini_api_key,
                http_options=types.HttpOptions(timeout=self.settings.api_timeout_seconds * 1000),
            )
        return self._client

    async def analyze(
        self,
        video_path: str,
        duration_seconds: float,
        on_progress: Optional[AnalysisProgressCallback] = None,
    ) -> AnalysisResult:
        """
        Analyze a downloaded video and return ranked clip candidates.

        Args:
            video_path: Local source video
            duration_seconds: Source duration from probing
            on_progress: Receives (percent 0-100, message)

        Raises:
            ClipAnalysisError: If the model response cannot be used
            ModelFallbackExhaustedError: If every model hit quota / not found
        """
        report = on_progress or (lambda percent, message: None)

        if self.uses_mock:
            logger.info("No Gemini key configured, using mock analysis")
            return await self._analyze_mock(video_path, duration_seconds, report)

        logger.info(f"Analyzing {os.path.basename(video_path)} with Gemini")
        return await self._analyze_gemini(video_path, duration_seconds, report)

    # ------------------------------------------------------------------
    # Mock analysis
    # ------------------------------------------------------------------

    async def _analyze_mock(
        self,
        video_path: str,
        duration_seconds: float,
        report: AnalysisProgressCallback,
    ) -> AnalysisResult:
        delay = self.settings.mock_step_delay_seconds

        report(30, "Scanning video frames...")
        await asyncio.sleep(delay)
        report(65, "Detecting engagement peaks...")
        await asyncio.sleep(delay)
        report(95, "Ranking clips by virality...")
        await asyncio.sleep(delay / 2)

        clips = build_mock_clips(video_path, duration_seconds, self.settings.max_candidate_clips)
        report(100, "Analysis complete!")
        return AnalysisResult(clips=clips, transcript=None, used_mock=True)

    # ------------------------------------------------------------------
    # Gemini analysis
    # ------------------------------------------------------------------

    async def _analyze_gemini(
        self,
        video_path: str,
        duration_seconds: float,
        report: AnalysisProgressCallback,
    ) -> AnalysisResult:
        client = self._get_client()

        report(8, "Extracting audio...")
        uploaded = await self._extract_and_upload(video_path, duration_seconds, report)

        try:
            report(35, "Gemini is analyzing your video...")
            analysis = await self._transcribe_and_detect(uploaded, duration_seconds)

            raw_clips = analysis.get("clips") if isinstance(analysis, dict) else analysis
            candidates = validate_candidates(
                raw_clips, duration_seconds, self.settings.max_candidate_clips
            )
            logger.info(f"Gemini proposed {len(candidates)} usable clips")

            report(80, "Generating metadata for each clip...")
            metadata = await asyncio.gather(
                *(self._generate_metadata_safe(c) for c in candidates)
            )
        finally:
            await self._delete_remote_file(client, uploaded)

        for candidate, meta in zip(candidates, metadata):
            candidate.metadata = meta
            candidate.captions = spread_word_captions(
                candidate.transcript, candidate.start, candidate.end
            )

        report(100, "Analysis complete!")
        transcript = analysis.get("transcript") if isinstance(analysis, dict) else None
        return AnalysisResult(clips=candidates, transcript=transcript, used_mock=False)

    async def _extract_and_upload(
        self,
        video_path: str,
        duration_seconds: float,
        report: AnalysisProgressCallback,
    ) -> types.File:
        """Extract speech audio to a temp MP3 and upload it to the Gemini File API."""
        fd, audio_path = tempfile.mkstemp(
            suffix="_audio.mp3", dir=os.path.dirname(os.path.abspath(video_path))
        )
        os.close(fd)

        try:
            await self.media.extract_audio(
                video_path,
                audio_path,
                duration_seconds=duration_seconds,
                on_progress=lambda f: report(8 + f * 14, "Extracting audio..."),
            )
            size_mb = os.path.getsize(audio_path) / 1024 / 1024
            logger.info(f"Audio extracted ({size_mb:.1f}MB), uploading to Gemini File API")

            report(22, "Uploading audio to Gemini...")
            uploaded = await self._get_client().aio.files.upload(
                file=audio_path,
                config=types.UploadFileConfig(
                    mime_type="audio/mpeg",
                    display_name=os.path.basename(audio_path),
                ),
            )
        finally:
            try:
                os.remove(audio_path)
            except OSError as e:
                logger.warning(f"Failed to remove temp audio {audio_path}: {e}")

        state = getattr(uploaded.state, "name", uploaded.state)
        logger.info(f"File uploaded: name={uploaded.name} state={state}")
        if state == "PROCESSING":
            # Short audio is usually ACTIVE right away
            await asyncio.sleep(self.settings.gemini_file_processing_wait_seconds)
        return uploaded

    async def _transcribe_and_detect(self, uploaded: types.File, duration_seconds: float) -> Any:
        prompt = ANALYSIS_PROMPT.format(
            max_clips=self.settings.max_candidate_clips,
            duration=round(duration_seconds, 1),
            categories=", ".join(sorted(VIRAL_CATEGORIES)),
        )
        contents = [
            prompt,
            types.Part.from_uri(
                file_uri=uploaded.uri,
                mime_type=uploaded.mime_type or "audio/mpeg",
            ),
        ]
        config = types.GenerateContentConfig(
            temperature=0.7,
            top_p=0.95,
            max_output_tokens=8192,
            response_mime_type="application/json",
            safety_settings=[
                types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_NONE)
                for category in SAFETY_CATEGORIES
            ],
        )
        text = await self._generate(contents, config)
        return parse_model_json(text)

    async def _generate_metadata_safe(self, candidate: CandidateClip) -> ClipMetadata:
        try:
            return await self._generate_metadata(candidate)
        except Exception as e:
            logger.warning(f"Metadata generation failed for '{candidate.title}': {e}")
            return ClipMetadata(
                titles=[candidate.title],
                hashtags=[],
                caption=candidate.hook or "",
            )

    async def _generate_metadata(self, candidate: CandidateClip) -> ClipMetadata:
        prompt = METADATA_PROMPT.format(
            title=candidate.title,
            category=candidate.category or "general",
            transcript=candidate.transcript or candidate.hook or "",
            max_hashtags=self.settings.max_hashtags,
        )
        config = types.GenerateContentConfig(response_mime_type="application/json")
        data = parse_model_json(await self._generate(prompt, config))
        if not isinstance(data, dict):
            raise ClipAnalysisError("Metadata response is not a JSON object")

        titles = [str(t).strip() for t in data.get("titles") or [] if str(t).strip()]
        hashtags = [str(h).strip() for h in data.get("hashtags") or [] if str(h).strip()]
        return ClipMetadata(
            titles=titles[:3] or [candidate.title],
            hashtags=hashtags[:self.settings.max_hashtags],
            caption=str(data.get("caption") or candidate.hook or ""),
        )

    async def _generate(self, contents: Any, config: types.GenerateContentConfig) -> str:
        """Run one request through the model fallback chain and return its text."""
        client = self._get_client()

        async def attempt(model_name: str) -> str:
            logger.debug(f"Trying model: {model_name}")
            response = await client.aio.models.generate_content(
                model=model_name,
                contents=contents,
                config=config,
            )
            return response.text or ""

        return await first_successful_async(
            self.settings.gemini_models,
            attempt,
            is_retryable=is_retryable_model_error,
            exhausted=lambda e: ModelFallbackExhaustedError(
                "All Gemini models quota exceeded. Please wait a few minutes and try again."
            ),
        )

    @staticmethod
    async def _delete_remote_file(client: genai.Client, uploaded: types.File) -> None:
        try:
            await client.aio.files.delete(name=uploaded.name)
        except Exception as e:
            logger.warning(f"Failed to delete Gemini file {uploaded.name}: {e}")


def build_mock_clips(
    source_key: str,
    duration_seconds: float,
    max_clips: int = 5,
) -> list[CandidateClip]:
    """
    Build deterministic placeholder clips for a source.

    The same source key and duration always yield the same clips, and every
    clip satisfies 0 <= start < end <= duration.
    """
    if duration_seconds <= 0:
        return []

    seed = int(hashlib.sha256(source_key.encode("utf-8")).hexdigest()[:16], 16)
    rng = random.Random(seed)
    lead_in = min(10.0, duration_seconds * 0.1)

    clips: list[CandidateClip] = []
    for template in MOCK_TEMPLATES[:max_clips]:
        start = float(math.floor(rng.random() * duration_seconds * 0.5 + lead_in))
        length = float(math.floor(rng.random() * 25 + 20))
        end = min(start + length, duration_seconds)
        if not 0 <= start < end:
            continue
        clips.append(_mock_clip(template, start, end))

    if not clips:
        clips.append(_mock_clip(MOCK_TEMPLATES[0], 0.0, float(duration_seconds)))

    clips.sort(key=lambda c: c.virality_score or 0, reverse=True)
    return clips


def _mock_clip(template: dict, start: float, end: float) -> CandidateClip:
    return CandidateClip(
        title=template["title"],
        start=start,
        end=end,
        hook=MOCK_HOOK,
        reason="High engagement segment detected",
        virality_score=float(template["score"]),
        category=template["category"],
        transcript="Sample transcript for this clip segment.",
        captions=[],
        metadata=ClipMetadata(
            titles=[template["title"]],
            hashtags=list(MOCK_HASHTAGS),
            caption=template["title"],
        ),
    )


def _as_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


class ClipAnalysisError(Exception):
    """Exception raised when clip analysis fails."""
    pass


class ModelFallbackExhaustedError(ClipAnalysisError):
    """Exception raised when every model in the fallback chain is unavailable."""
    pass
