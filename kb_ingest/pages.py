"""Split extracted document text into pages using page-break heuristics."""

from __future__ import annotations

import re
from typing import Dict, List

PAGE_BREAK = "<<<PAGE_BREAK>>>"
LINES_PER_PAGE = 300

_RULE_LINE_RE = re.compile(r"^\s*[-─═_=]{20,}\s*$")
_PAGE_NUMBER_RE = re.compile(r"^\s*page\s+\d+(\s*(of|/)\s*\d+)?\s*$", re.IGNORECASE)
# "Document Title | 01/02/2024" style running footers
_PIPE_FOOTER_RE = re.compile(r"^[^|\n]{3,60}\|[^|\n]{5,30}$")
_DATE_RE = re.compile(
    r"\b(\d{1,4}[/.-]\d{1,2}[/.-]\d{1,4}"
    r"|(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})\b",
    re.IGNORECASE,
)


def _find_repeated_footers(lines: List[str], max_len: int = 60, min_count: int = 3) -> set:
    """Find short dated lines that repeat frequently (likely running footers)."""
    counts: Dict[str, int] = {}
    for line in lines:
        text = line.strip()
        if not text or len(text) > max_len or not _DATE_RE.search(text):
            continue
        counts[text] = counts.get(text, 0) + 1
    return {text for text, count in counts.items() if count >= min_count}


def is_page_marker(line: str, repeated_footers: set = frozenset()) -> bool:
    """Whether a single line signals a page boundary."""
    stripped = line.strip()
    if not stripped:
        return False
    if stripped == PAGE_BREAK:
        return True
    if _RULE_LINE_RE.match(line) or _PAGE_NUMBER_RE.match(stripped):
        return True
    if _PIPE_FOOTER_RE.match(stripped):
        return True
    return stripped in repeated_footers


def normalize_page_breaks(text: str) -> List[str]:
    """Return the document lines with every page-break signal replaced by ``PAGE_BREAK``."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\f", f"\n{PAGE_BREAK}\n")
    lines = text.split("\n")
    repeated = _find_repeated_footers(lines)
    return [PAGE_BREAK if is_page_marker(line, repeated) else line for line in lines]


def split_pages(text: str, lines_per_page: int = LINES_PER_PAGE) -> List[str]:
    """
    Split raw document text into ordered page texts.

    Form feeds, long horizontal rules, ``Page N`` lines and running footers
    all count as page breaks. When no break is found at all the text is cut
    into fixed blocks of ``lines_per_page`` lines, so an unmarked document
    still splits.

    Returns:
        Non-empty page texts in document order; empty list for blank input
    """
    if not text or not text.strip():
        return []

    lines = normalize_page_breaks(text)
    pages: List[str] = []
    current: List[str] = []
    for line in lines:
        if line == PAGE_BREAK:
            pages.append("\n".join(current))
            current = []
        else:
            current.append(line)
    pages.append("\n".join(current))
    pages = [page.strip("\n") for page in pages if page.strip()]

    if len(pages) > 1:
        return pages

    body = [line for line in lines if line != PAGE_BREAK]
    blocks = []
    for start in range(0, len(body), max(lines_per_page, 1)):
        block = "\n".join(body[start : start + lines_per_page])
        if block.strip():
            blocks.append(block.strip("\n"))
    return blocks or [text]
