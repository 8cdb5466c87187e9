"""
Caption Generator - Renders word-timed captions as ASS (Advanced SubStation Alpha) subtitles.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


# Seconds a word stays on screen when no end time is known
DEFAULT_WORD_SPAN_SECONDS = 0.4

DEFAULT_STYLE_NAME = "viral-bold"

# ASS alignment values (numpad layout)
# 7 8 9 (top)
# 4 5 6 (middle)
# 1 2 3 (bottom)
ALIGN_BOTTOM_CENTER = 2


@dataclass(frozen=True)
class CaptionStyle:
    """Caption styling for burned-in subtitles."""

    name: str
    label: str
    font_name: str
    font_size: int
    primary_color: str
    outline_color: str
    bold: bool
    italic: bool
    outline_width: int
    shadow_depth: int
    alignment: int = ALIGN_BOTTOM_CENTER
    outline_alpha: int = 0


@dataclass
class CaptionWord:
    """A single caption word with times relative to the clip start (seconds)."""

    word: str
    start: float
    end: Optional[float] = None


CAPTION_STYLES: dict[str, CaptionStyle] = {
    "viral-bold": CaptionStyle(
        name="viral-bold",
        label="Viral Bold",
        font_name="Impact",
        font_size=52,
        primary_color="#FFFFFF",
        outline_color="#000000",
        bold=True,
        italic=True,
        outline_width=3,
        shadow_depth=2,
    ),
    "minimal": CaptionStyle(
        name="minimal",
        label="Minimal",
        font_name="Arial",
        font_size=38,
        primary_color="#FFFFFF",
        outline_color="#000000",
        outline_alpha=0x80,  # half-transparent outline
        bold=False,
        italic=False,
        outline_width=1,
        shadow_depth=0,
    ),
    "neon-glow": CaptionStyle(
        name="neon-glow",
        label="Neon Glow",
        font_name="Arial Black",
        font_size=48,
        primary_color="#00FFFF",  # Cyan
        outline_color="#FFFF00",
        bold=True,
        italic=False,
        outline_width=4,
        shadow_depth=4,
    ),
    "cinematic": CaptionStyle(
        name="cinematic",
        label="Cinematic",
        font_name="Georgia",
        font_size=32,
        primary_color="#FFFFFF",
        outline_color="#000000",
        bold=False,
        italic=False,
        outline_width=0,
        shadow_depth=0,
    ),
}


def get_caption_style(style_name: Optional[str]) -> CaptionStyle:
    """Look up a caption style, falling back to the default bold style."""
    style = CAPTION_STYLES.get(style_name or "")
    if style is None:
        logger.debug(f"Unknown caption style '{style_name}', using {DEFAULT_STYLE_NAME}")
        return CAPTION_STYLES[DEFAULT_STYLE_NAME]
    return style


def list_caption_styles() -> list[dict]:
    """List caption styles with preview metadata for UI rendering."""
    return [
        {
            "id": style.name,
            "name": style.label,
            "font": style.font_name,
            "preview_colors": {
                "primary": style.primary_color,
                "outline": style.outline_color,
            },
        }
        for style in CAPTION_STYLES.values()
    ]


def render_ass(words: Iterable[CaptionWord], style_name: Optional[str] = None) -> str:
    """
    Render caption words as a complete ASS document.

    Every word becomes one Dialogue event, upper-cased, shown from its start
    until its end (or start + 0.4s when no end is known).

    Args:
        words: Word timings relative to the clip start
        style_name: Caption style name; unknown names use the default style

    Returns:
        ASS document text (header, styles and events)
    """
    style = get_caption_style(style_name)
    events: list[str] = []

    for caption in words:
        text = _escape_ass_text(caption.word.strip().upper())
        if not text:
            continue

        start = max(0.0, float(caption.start))
        end = caption.end if caption.end is not None else start + DEFAULT_WORD_SPAN_SECONDS
        end = max(float(end), start)

        events.append(
            f"Dialogue: 0,{format_ass_time(start)},{format_ass_time(end)},Default,,0,0,0,,{text}"
        )

    return _generate_ass_header(style) + _generate_events_header() + "\n".join(events) + "\n"


def _generate_ass_header(style: CaptionStyle) -> str:
    """Generate ASS header with the style definition."""
    primary_color = _hex_to_ass(style.primary_color)
    outline_color = _hex_to_ass(style.outline_color, style.outline_alpha)
    back_color = _hex_to_ass("#000000")
    bold = -1 if style.bold else 0
    italic = -1 if style.italic else 0

    return f"""[Script Info]
Title: ClipForge Captions
ScriptType: v4.00+
WrapStyle: 0
ScaledBorderAndShadow: yes
PlayResX: 1080
PlayResY: 1920

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
Style: Default,{style.font_name},{style.font_size},{primary_color},{outline_color},{back_color},{bold},{italic},0,0,100,100,0,0,1,{style.outline_width},{style.shadow_depth},{style.alignment},60,60,120,1

"""


def _generate_events_header() -> str:
    """Generate ASS events section header."""
    return "[Events]\nFormat: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text\n"


def _escape_ass_text(text: str) -> str:
    # Braces open override blocks in ASS
    return text.replace("{", "(").replace("}", ")").replace("\n", " ")


def _hex_to_ass(hex_color: str, alpha: int = 0) -> str:
    """Convert hex color to ASS format (&HAABBGGRR)."""
    clean = hex_color.lstrip("#")

    r = int(clean[0:2], 16)
    g = int(clean[2:4], 16)
    b = int(clean[4:6], 16)

    return f"&H{alpha:02X}{b:02X}{g:02X}{r:02X}"


def format_ass_time(seconds: float) -> str:
    """Format seconds to ASS time format (H:MM:SS.CC)."""
    total_cs = int(round(seconds * 100))
    centiseconds = total_cs % 100
    total_seconds = total_cs // 100
    secs = total_seconds % 60
    minutes = (total_seconds // 60) % 60
    hours = total_seconds // 3600

    return f"{hours}:{minutes:02d}:{secs:02d}.{centiseconds:02d}"
