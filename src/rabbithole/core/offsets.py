"""offset bookkeeping between rendered and canonical message text.

a highlighted span may be displayed with its anchor text instead of the raw
span, so offsets reported against the rendered text drift from the stored
text. canonical offsets always point into the raw stored text.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from .models import Highlight


def _display_length(highlight: Highlight) -> int:
    raw_length = highlight.end_offset - highlight.start_offset
    return len(highlight.text) if highlight.text else raw_length


def to_canonical(rendered_offset: int, highlights: Iterable[Highlight] = ()) -> int:
    """map an offset in rendered text back to the raw stored text.

    offsets that land inside a highlight's displayed span are clamped into
    that highlight's raw span.
    """
    delta = 0
    for highlight in sorted(highlights, key=lambda h: h.start_offset):
        raw_length = highlight.end_offset - highlight.start_offset
        display_length = _display_length(highlight)
        rendered_start = highlight.start_offset + delta
        rendered_end = rendered_start + display_length
        if rendered_offset < rendered_start:
            return rendered_offset - delta
        if rendered_offset < rendered_end:
            relative = rendered_offset - rendered_start
            return highlight.start_offset + min(relative, raw_length)
        delta += display_length - raw_length
    return rendered_offset - delta


def overlaps(start: int, end: int, highlights: Iterable[Highlight] = ()) -> bool:
    """true if [start, end) intersects any existing highlight."""
    return any(start < h.end_offset and end > h.start_offset for h in highlights)


def render_segments(
    text: str, highlights: Sequence[Highlight] = ()
) -> list[tuple[str, Optional[Highlight]]]:
    """split text into display segments, substituting highlight anchor text.

    plain runs come back paired with None. this is the rendering that
    to_canonical inverts.
    """
    segments: list[tuple[str, Optional[Highlight]]] = []
    cursor = 0
    for highlight in sorted(highlights, key=lambda h: h.start_offset):
        if highlight.start_offset > cursor:
            segments.append((text[cursor:highlight.start_offset], None))
        raw = text[highlight.start_offset:highlight.end_offset]
        segments.append((highlight.text or raw, highlight))
        cursor = highlight.end_offset
    if cursor < len(text):
        segments.append((text[cursor:], None))
    return segments
