"""
Text measurement backed by fpdf2 core-font metrics.

The layout engine never draws while it measures; it asks a TextMeasurer how
wide a string is and how a paragraph wraps into a column, then emits draw
operations that the PDF writer replays with the same fonts.
"""
from __future__ import annotations

from typing import List, Tuple

from fpdf import FPDF

FONT_FAMILY = "helvetica"
ELLIPSIS = "..."

_REPLACEMENTS = {
    "—": "-",
    "–": "-",
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
    "…": "...",
    " ": " ",
    "\t": "    ",
}


def sanitize(text: object) -> str:
    """Make text safe for the Latin-1 core fonts."""
    if text is None:
        return ""
    text = str(text)
    if not text:
        return ""
    for source, target in _REPLACEMENTS.items():
        text = text.replace(source, target)
    return text.encode("latin-1", "replace").decode("latin-1")


class TextMeasurer:
    def __init__(self, family: str = FONT_FAMILY):
        self.family = family
        self._pdf = FPDF(orientation="P", unit="mm", format="A4")
        self._font: Tuple[str, float] = ("", 0.0)

    @property
    def cell_margin(self) -> float:
        return float(getattr(self._pdf, "c_margin", 1.0))

    def _use(self, style: str, size: float) -> None:
        if self._font != (style, size):
            self._pdf.set_font(self.family, style, size)
            self._font = (style, size)

    def width(self, text: str, style: str = "", size: float = 9) -> float:
        self._use(style, size)
        return self._pdf.get_string_width(sanitize(text))

    def wrap(self, text: str, max_width: float, style: str = "", size: float = 9) -> List[str]:
        """Word-wrap ``text`` into lines no wider than ``max_width``.

        Explicit newlines are kept. Words wider than the column are split
        by character.
        """
        text = sanitize(text)
        if not text:
            return []
        self._use(style, size)
        if max_width <= 0:
            return text.splitlines()

        lines: List[str] = []
        for paragraph in text.replace("\r", "").split("\n"):
            line = ""
            for word in paragraph.split(" "):
                candidate = f"{line} {word}" if line else word
                if self._pdf.get_string_width(candidate) <= max_width:
                    line = candidate
                    continue
                if line:
                    lines.append(line)
                line = ""
                for ch in word:
                    if line and self._pdf.get_string_width(line + ch) > max_width:
                        lines.append(line)
                        line = ch
                    else:
                        line += ch
            lines.append(line.rstrip())
        return lines

    def truncate(self, text: str, max_width: float, style: str = "", size: float = 9, suffix: str = ELLIPSIS) -> str:
        """Clip ``text`` to ``max_width``, marking the cut with ``suffix``."""
        text = sanitize(text)
        if not text:
            return ""
        self._use(style, size)
        if max_width <= 0 or self._pdf.get_string_width(text) <= max_width:
            return text
        return self._cut(text, max_width, suffix)

    def ellipsize(self, text: str, max_width: float, style: str = "", size: float = 9) -> str:
        """Return ``text`` ending in "..." and still fitting ``max_width``."""
        text = sanitize(text).rstrip()
        self._use(style, size)
        if self._pdf.get_string_width(text + ELLIPSIS) <= max_width:
            return text + ELLIPSIS
        return self._cut(text, max_width, ELLIPSIS)

    def _cut(self, text: str, max_width: float, suffix: str) -> str:
        suffix_width = self._pdf.get_string_width(suffix)
        if suffix_width >= max_width:
            return suffix
        low = 0
        high = len(text)
        while low < high:
            mid = (low + high) // 2
            if self._pdf.get_string_width(text[:mid]) + suffix_width <= max_width:
                low = mid + 1
            else:
                high = mid
        cut = max(low - 1, 0)
        return text[:cut].rstrip() + suffix
