"""
Tests for ASS caption rendering.
"""

from clipforge.services.caption_generator import (
    CAPTION_STYLES,
    CaptionWord,
    format_ass_time,
    get_caption_style,
    list_caption_styles,
    render_ass,
)


def _dialogue_lines(document: str) -> list[str]:
    return [line for line in document.splitlines() if line.startswith("Dialogue:")]


class TestFormatAssTime:
    """Tests for ASS timestamp formatting."""

    def test_zero(self):
        assert format_ass_time(0) == "0:00:00.00"

    def test_sub_second(self):
        assert format_ass_time(0.4) == "0:00:00.40"

    def test_minutes_and_hours(self):
        assert format_ass_time(3725.5) == "1:02:05.50"


class TestCaptionStyles:
    """Tests for the caption style table."""

    def test_known_styles(self):
        assert set(CAPTION_STYLES) == {"viral-bold", "minimal", "neon-glow", "cinematic"}

    def test_unknown_style_falls_back_to_viral_bold(self):
        assert get_caption_style("does-not-exist").name == "viral-bold"
        assert get_caption_style(None).name == "viral-bold"

    def test_list_caption_styles_shape(self):
        styles = list_caption_styles()
        assert len(styles) == 4
        first = styles[0]
        assert set(first) == {"id", "name", "font", "preview_colors"}
        assert set(first["preview_colors"]) == {"primary", "outline"}


class TestRenderAss:
    """Tests for render_ass."""

    def test_two_words_back_to_back(self):
        """Each word is its own upper-cased event with its own timing."""
        document = render_ass(
            [CaptionWord("hello", 0.0, 0.5), CaptionWord("world", 0.5, 1.0)],
            "viral-bold",
        )
        lines = _dialogue_lines(document)
        assert lines == [
            "Dialogue: 0,0:00:00.00,0:00:00.50,Default,,0,0,0,,HELLO",
            "Dialogue: 0,0:00:00.50,0:00:01.00,Default,,0,0,0,,WORLD",
        ]

    def test_missing_end_defaults_to_four_tenths(self):
        lines = _dialogue_lines(render_ass([CaptionWord("hey", 2.0)]))
        assert lines == ["Dialogue: 0,0:00:02.00,0:00:02.40,Default,,0,0,0,,HEY"]

    def test_document_sections_and_resolution(self):
        document = render_ass([CaptionWord("a", 0, 1)], "minimal")
        assert document.startswith("[Script Info]")
        assert "[V4+ Styles]" in document
        assert "[Events]" in document
        assert "PlayResX: 1080" in document
        assert "PlayResY: 1920" in document

    def test_style_line_uses_selected_style(self):
        document = render_ass([], "neon-glow")
        style_line = next(l for l in document.splitlines() if l.startswith("Style: Default,"))
        # Cyan primary (&HAABBGGRR), bold on, italic off
        assert "Arial Black,48,&H00FFFF00" in style_line
        assert ",-1,0,0,0,100,100," in style_line

    def test_braces_are_neutralized(self):
        lines = _dialogue_lines(render_ass([CaptionWord("{\\b1}x", 0, 1)]))
        assert "{" not in lines[0].split(",,")[-1]

    def test_blank_words_are_skipped(self):
        assert _dialogue_lines(render_ass([CaptionWord("  ", 0, 1)])) == []
