import pytest

from signalscope.highlight import (
    Highlighter,
    extract_with_highlight,
    pad_or_truncate,
    truncate_with_ellipsis,
)


class TestPadding:
    @pytest.mark.parametrize("text, width, expected", [
        ("abc", 5, "abc  "),
        ("abcdef", 5, "ab..."),
        ("abc", 3, "abc"),
        ("abcdef", 2, "ab"),
        ("abc", 0, "abc"),
    ])
    def test_pad_or_truncate(self, text, width, expected):
        assert pad_or_truncate(text, width) == expected

    def test_truncate_leaves_short_text(self):
        assert truncate_with_ellipsis("short", 10) == "short"


class TestExtract:
    def test_match_inside_width_is_unchanged(self):
        assert extract_with_highlight("an error here", "error", 40) == ("an error here", 3, 8)

    def test_late_match_stays_visible(self):
        text = "x" * 60 + "needle" + "y" * 60
        window, start, end = extract_with_highlight(text, "NEEDLE", 30)
        assert len(window) == 30
        assert window[start:end] == "needle"
        assert window.startswith("...")
        assert window.endswith("...")

    def test_no_match(self):
        assert extract_with_highlight("abc", "zzz", 10) == ("abc", -1, -1)


class TestHighlighter:
    def test_empty_query_is_plain_padding(self):
        hl = Highlighter("")
        assert not hl.is_active()
        text = hl.apply("hello", 8)
        assert text.plain == pad_or_truncate("hello", 8)
        assert hl.spans(text) == []

    def test_apply_has_exact_width(self):
        hl = Highlighter("err")
        for value in ("", "err", "a long line with an err somewhere in the middle of it"):
            assert len(hl.apply(value, 20).plain) == 20

    def test_apply_marks_first_match_case_insensitively(self):
        hl = Highlighter("ERR")
        text = hl.apply("an err occurred", 20)
        assert hl.spans(text) == [(3, 6)]

    def test_apply_to_field_marks_every_match(self):
        hl = Highlighter("err")
        text = hl.apply_to_field("err err2 ERR")
        assert hl.spans(text) == [(0, 3), (4, 7), (9, 12)]
        assert text.plain == "err err2 ERR"

    def test_base_style_is_not_a_highlight(self):
        hl = Highlighter("x")
        text = hl.apply("abc", 5, base_style="red")
        assert hl.spans(text) == []

    def test_offsets_survive_case_folding_that_changes_length(self):
        # "İ".lower() is two characters long
        hl = Highlighter("error")
        field = hl.apply_to_field("İİ error")
        assert [field.plain[a:b] for a, b in hl.spans(field)] == ["error"]
        cell = hl.apply("İİ error", 20)
        assert [cell.plain[a:b] for a, b in hl.spans(cell)] == ["error"]

    def test_query_is_literal_not_a_pattern(self):
        hl = Highlighter("a.b")
        text = hl.apply_to_field("axb a.b")
        assert hl.spans(text) == [(4, 7)]
