"""Search-term highlighting for list cells and detail panes."""

import re

from rich.style import Style
from rich.text import Text

ELLIPSIS = "..."
MATCH_ANCHOR = 12

HIGHLIGHT_STYLE = Style(bold=True, color="black", bgcolor="yellow")


def truncate_with_ellipsis(text: str, width: int) -> str:
    if width <= 0 or len(text) <= width:
        return text
    if width <= len(ELLIPSIS):
        return text[:width]
    return text[: width - len(ELLIPSIS)] + ELLIPSIS


def pad_or_truncate(text: str, width: int) -> str:
    """Exactly ``width`` characters. A non-positive width leaves ``text`` alone."""
    if width <= 0:
        return text
    if len(text) > width:
        return truncate_with_ellipsis(text, width)
    return text + " " * (width - len(text))


def _find(text: str, query: str) -> re.Match | None:
    """First case-insensitive match, with offsets into ``text`` itself."""
    return re.search(re.escape(query), text, re.IGNORECASE)


def extract_with_highlight(text: str, query: str, width: int) -> tuple[str, int, int]:
    """Window of ``text`` that keeps the first match of ``query`` visible.

    Returns ``(window, start, end)`` where start/end locate the match inside the
    window, or ``(-1, -1)`` when there is no match.
    """
    if not query:
        return text, -1, -1
    found = _find(text, query)
    if found is None:
        return text, -1, -1
    pos, pos_end = found.span()
    if width <= 0 or len(text) <= width:
        return text, pos, pos_end

    anchor = min(MATCH_ANCHOR, width // 2)
    start = max(0, pos - anchor)
    end = min(len(text), start + width)
    start = max(0, end - width)

    window = text[start:end]
    match_start = pos - start
    if start > 0:
        window = ELLIPSIS + window[len(ELLIPSIS):]
        match_start = max(match_start, len(ELLIPSIS))
    if end < len(text):
        window = window[: -len(ELLIPSIS)] + ELLIPSIS
    match_end = min(pos_end - start, len(window) - (len(ELLIPSIS) if end < len(text) else 0))
    if match_end <= match_start:
        return window, -1, -1
    return window, match_start, match_end


class Highlighter:
    """Case-insensitive substring highlighter for one query string."""

    def __init__(self, query: str, style: Style | str = HIGHLIGHT_STYLE):
        self.query = query
        self.style = style

    def is_active(self) -> bool:
        return bool(self.query)

    def apply(self, text: str, width: int, base_style: Style | str = "") -> Text:
        """Exact-width cell with the first match marked."""
        if not self.is_active():
            return Text(pad_or_truncate(text, width), style=base_style)

        window, start, end = extract_with_highlight(text, self.query, width)
        cell = pad_or_truncate(window, width)
        rendered = Text(cell, style=base_style)
        if start >= 0:
            rendered.stylize(self.style, start, min(end, len(cell)))
        return rendered

    def apply_to_field(self, text: str, base_style: Style | str = "") -> Text:
        """Untruncated text with every non-overlapping match marked."""
        rendered = Text(text, style=base_style)
        if not self.is_active():
            return rendered
        for match in re.finditer(re.escape(self.query), text, re.IGNORECASE):
            rendered.stylize(self.style, match.start(), match.end())
        return rendered

    def spans(self, text: Text) -> list[tuple[int, int]]:
        """Offsets of the highlight spans in a rendered Text."""
        return [(s.start, s.end) for s in text.spans if s.style == self.style]
