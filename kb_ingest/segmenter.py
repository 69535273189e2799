"""
Deterministic document segmentation.

Two interchangeable strategies produce raw segments from page texts:

- heading walk: every detected heading closes the current segment. Top-level
  headings reset the heading path, sub-level headings replace the child
  under the current top-level heading (depth 2 at most).
- table of contents: the document's own ToC is parsed and only entries at
  the minimum indentation (top-level topics) start new segments. Indented
  entries stay inside their parent topic. Everything before the first
  top-level heading in the body is preamble and is dropped.

Both strategies share the post-processing: short segments merge into their
neighbour, long segments split on paragraph boundaries with ``Part N``
appended to the heading path. The same text always yields the same
segments and the same segment ids.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .boundaries import DEFAULT_RULES, TOP_LEVEL, HeadingRule, detect_heading, is_footer
from .pages import LINES_PER_PAGE, PAGE_BREAK, split_pages
from .schemas import PageRange, Segment
from .utils import derive_segment_id, normalize_text, shorten, slugify

logger = logging.getLogger(__name__)

MIN_SEGMENT_CHARS = 300
MAX_SEGMENT_CHARS = 8000

TOC_HEADER_RE = re.compile(r"^(contents|table of contents)$", re.IGNORECASE)
TOC_SKIP_ENTRY_RE = re.compile(r"^(important links|frequently asked questions)$", re.IGNORECASE)
# Raw ToC line: indentation, title, dot leaders or 2+ spaces, page number
TOC_ENTRY_RE = re.compile(r"^(\s*)(.+?)(?:\s*\.{2,}\s*|\s{2,})(\d+)\s*$")
TOC_INDENT_TOLERANCE = 1
TOC_MAX_MISSES = 3

NOISE_LINE_RE = re.compile(
    r"^(contents|table of contents|important links|frequently asked questions)$",
    re.IGNORECASE,
)

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_PARAGRAPH_SEP = "\n\n"


class SegmentationStrategy(str, Enum):
    HEADING_WALK = "heading_walk"
    TABLE_OF_CONTENTS = "table_of_contents"


@dataclass
class _RawSegment:
    heading_path: List[str]
    lines: List[str] = field(default_factory=list)
    page_start: int = 1
    page_end: int = 1

    @property
    def content(self) -> str:
        return "\n".join(self.lines).strip()


# Table of contents

@dataclass(frozen=True)
class TocEntry:
    indent: int
    text: str
    page: int


def parse_toc(text: str) -> List[TocEntry]:
    """
    Parse the table-of-contents block that follows a ``Contents`` line.

    The block ends at a page break, a ``-- N of M --`` footer, or after more
    than three consecutive lines that are not ToC entries.
    """
    entries: List[TocEntry] = []
    in_toc = False
    misses = 0

    for line in text.replace("\r\n", "\n").split("\n"):
        stripped = line.strip()
        if not in_toc:
            if TOC_HEADER_RE.match(stripped):
                in_toc = True
            continue

        if line.startswith("\f") or PAGE_BREAK in stripped or re.match(r"^--\s*\d+", stripped):
            break
        if not stripped:
            continue

        match = TOC_ENTRY_RE.match(line.expandtabs(4))
        if match:
            heading = match.group(2).strip()
            if not TOC_HEADER_RE.match(heading) and not TOC_SKIP_ENTRY_RE.match(heading):
                entries.append(TocEntry(len(match.group(1)), heading, int(match.group(3))))
            misses = 0
        else:
            misses += 1
            if misses > TOC_MAX_MISSES:
                break

    return entries


def extract_toc_headings(text: str) -> List[str]:
    """Top-level ToC headings: entries at the minimum indentation, in ToC order."""
    entries = parse_toc(text)
    if not entries:
        return []

    min_indent = min(entry.indent for entry in entries)
    headings: List[str] = []
    for entry in entries:
        if entry.indent <= min_indent + TOC_INDENT_TOLERANCE and entry.text not in headings:
            headings.append(entry.text)
    logger.debug("ToC top-level headings: min_indent=%d count=%d", min_indent, len(headings))
    return headings


def _body_contains_heading(text: str, headings: Sequence[str]) -> bool:
    wanted = set(headings)
    seen_toc = False
    for line in text.split("\n"):
        stripped = line.strip()
        if TOC_HEADER_RE.match(stripped):
            seen_toc = True
            continue
        if seen_toc and stripped in wanted:
            return True
    return False


def select_strategy(text: str) -> SegmentationStrategy:
    """
    Pick the segmentation strategy for a document.

    The ToC-driven strategy is used when the document carries a table of
    contents with at least two top-level headings and at least one of them
    appears verbatim as a line of the body; otherwise headings are walked.
    """
    headings = extract_toc_headings(text)
    if len(headings) >= 2 and _body_contains_heading(text, headings):
        return SegmentationStrategy.TABLE_OF_CONTENTS
    return SegmentationStrategy.HEADING_WALK


# Strategies

def _walk_headings(
    pages: Sequence[str],
    root_title: str,
    rules: Sequence[HeadingRule],
) -> List[_RawSegment]:
    segments: List[_RawSegment] = []
    top: Optional[str] = None
    current = _RawSegment(heading_path=[root_title])

    def flush() -> None:
        if current.content:
            segments.append(current)

    for page_idx, page_text in enumerate(pages):
        page_num = page_idx + 1
        for line in page_text.split("\n"):
            if is_footer(line):
                continue
            heading = detect_heading(line, rules)
            if heading is None:
                if not current.lines:
                    current.page_start = page_num
                current.lines.append(line)
                current.page_end = page_num
                continue

            flush()
            if heading.level == TOP_LEVEL or top is None:
                top = heading.text
                path = [heading.text]
            else:
                path = [top, heading.text]
            current = _RawSegment(heading_path=path, lines=[line], page_start=page_num, page_end=page_num)

    flush()
    return segments


def _walk_toc(pages: Sequence[str], headings: Sequence[str]) -> List[_RawSegment]:
    wanted = set(headings)
    segments: List[_RawSegment] = []
    current: Optional[_RawSegment] = None
    seen_toc = False

    for page_idx, page_text in enumerate(pages):
        page_num = page_idx + 1
        for line in page_text.split("\n"):
            stripped = line.strip()
            if current is None:
                # Preamble (cover, ToC) until the first top-level heading in the body
                if TOC_HEADER_RE.match(stripped):
                    seen_toc = True
                elif seen_toc and stripped in wanted:
                    current = _RawSegment([stripped], [line], page_num, page_num)
                continue

            if is_footer(stripped) or NOISE_LINE_RE.match(stripped):
                continue
            if stripped in wanted:
                if current.content:
                    segments.append(current)
                current = _RawSegment([stripped], [line], page_num, page_num)
            else:
                current.lines.append(line)
                current.page_end = page_num

    if current is not None and current.content:
        segments.append(current)
    return segments


# Post-processing

def _merge_short(segments: List[_RawSegment], min_chars: int) -> List[_RawSegment]:
    """Fold segments shorter than ``min_chars`` into the preceding one (the next one if first)."""
    merged: List[_RawSegment] = []
    carry: Optional[_RawSegment] = None

    for seg in segments:
        if carry is not None:
            seg = _RawSegment(
                heading_path=seg.heading_path,
                lines=carry.lines + [""] + seg.lines,
                page_start=carry.page_start,
                page_end=seg.page_end,
            )
            carry = None

        if len(seg.content) >= min_chars:
            merged.append(seg)
        elif merged:
            prev = merged[-1]
            prev.lines.extend([""] + seg.lines)
            prev.page_end = seg.page_end
        else:
            carry = seg

    if carry is not None:
        merged.append(carry)
    return merged


def _units(text: str, max_chars: int) -> List[str]:
    """Paragraphs of ``text``; paragraphs over ``max_chars`` break on lines, then hard."""
    units: List[str] = []
    for para in _PARAGRAPH_SPLIT_RE.split(text):
        para = para.strip()
        if not para:
            continue
        if len(para) <= max_chars:
            units.append(para)
            continue
        for line in para.split("\n"):
            line = line.strip()
            for start in range(0, len(line), max_chars):
                piece = line[start : start + max_chars].strip()
                if piece:
                    units.append(piece)
    return units


def _pack(units: Sequence[str], max_chars: int) -> List[str]:
    pieces: List[str] = []
    buffer: List[str] = []
    length = 0
    for unit in units:
        added = len(unit) + (len(_PARAGRAPH_SEP) if buffer else 0)
        if buffer and length + added > max_chars:
            pieces.append(_PARAGRAPH_SEP.join(buffer))
            buffer, length = [], 0
            added = len(unit)
        buffer.append(unit)
        length += added
    if buffer:
        pieces.append(_PARAGRAPH_SEP.join(buffer))
    return pieces


def _split_pair(text: str, min_chars: int, max_chars: int) -> Tuple[str, str]:
    """Split ``text`` in two, at the most balanced paragraph boundary that respects both bounds."""
    units = [unit for unit in _PARAGRAPH_SPLIT_RE.split(text) if unit.strip()]
    best: Optional[Tuple[str, str]] = None
    best_gap = None
    for k in range(1, len(units)):
        left = _PARAGRAPH_SEP.join(units[:k]).strip()
        right = _PARAGRAPH_SEP.join(units[k:]).strip()
        if min_chars <= len(left) <= max_chars and min_chars <= len(right) <= max_chars:
            gap = abs(len(left) - len(right))
            if best_gap is None or gap < best_gap:
                best, best_gap = (left, right), gap
    if best is not None:
        return best

    middle = len(text) // 2
    cut = text.rfind(" ", 0, middle + 1)
    if cut <= 0 or middle - cut > max(min_chars // 2, 1):
        cut = middle
    return text[:cut].strip(), text[cut:].strip()


def _balance(pieces: List[str], min_chars: int, max_chars: int) -> List[str]:
    """Fix pieces shorter than ``min_chars`` left behind by greedy packing."""
    pieces = list(pieces)
    for _ in range(len(pieces) * 4 + 1):
        short = next((i for i, piece in enumerate(pieces) if len(piece.strip()) < min_chars), None)
        if short is None or len(pieces) < 2:
            break
        left = short - 1 if short > 0 else short
        combined = pieces[left] + _PARAGRAPH_SEP + pieces[left + 1]
        if len(combined) <= max_chars:
            pieces[left : left + 2] = [combined]
        else:
            pieces[left : left + 2] = list(_split_pair(combined, min_chars, max_chars))
    return pieces


def _split_long(segments: List[_RawSegment], min_chars: int, max_chars: int) -> List[_RawSegment]:
    final: List[_RawSegment] = []
    for seg in segments:
        content = seg.content
        if len(content) <= max_chars:
            final.append(seg)
            continue

        pieces = _balance(_pack(_units(content, max_chars), max_chars), min_chars, max_chars)
        if len(pieces) == 1:
            final.append(_RawSegment(seg.heading_path, pieces[0].split("\n"), seg.page_start, seg.page_end))
            continue
        for part, piece in enumerate(pieces, start=1):
            final.append(
                _RawSegment(
                    heading_path=seg.heading_path + [f"Part {part}"],
                    lines=piece.split("\n"),
                    page_start=seg.page_start,
                    page_end=seg.page_end,
                )
            )
    return final


def segment_document(
    text: str,
    doc_title: str = "document",
    strategy: Optional[SegmentationStrategy] = None,
    min_chars: int = MIN_SEGMENT_CHARS,
    max_chars: int = MAX_SEGMENT_CHARS,
    lines_per_page: int = LINES_PER_PAGE,
    rules: Sequence[HeadingRule] = DEFAULT_RULES,
) -> List[Segment]:
    """
    Segment extracted document text.

    Args:
        text: Plain text of the whole document
        doc_title: Title used as heading path for text before the first heading
        strategy: Force a strategy; chosen with select_strategy() when None
        min_chars: Segments shorter than this merge into a neighbour
        max_chars: Segments longer than this split on paragraph boundaries
        lines_per_page: Block size used when the text has no page breaks
        rules: Heading heuristics for the heading walk

    Returns:
        Segments in document order. An empty list means no structure could
        be found and the caller should fall back to whole-document extraction.
    """
    if not text or not text.strip():
        return []

    pages = split_pages(text, lines_per_page=lines_per_page)
    if strategy is None:
        strategy = select_strategy(text)

    if strategy == SegmentationStrategy.TABLE_OF_CONTENTS:
        headings = extract_toc_headings(text)
        raw = _walk_toc(pages, headings) if headings else []
        if not raw:
            logger.warning("No ToC headings matched the body; falling back to heading walk")
            strategy = SegmentationStrategy.HEADING_WALK

    if strategy == SegmentationStrategy.HEADING_WALK:
        root_title = slugify(doc_title, max_len=40) or "document"
        raw = _walk_headings(pages, root_title, rules)

    raw = _merge_short(raw, min_chars)
    raw = _split_long(raw, min_chars, max_chars)

    segments = []
    for idx, seg in enumerate(raw):
        content = seg.content
        segments.append(
            Segment(
                index=idx,
                heading_path=list(seg.heading_path),
                content=content,
                page_range=PageRange(start=seg.page_start, end=max(seg.page_end, seg.page_start)),
                stable_id=derive_segment_id(seg.heading_path, content),
            )
        )
    logger.info("Document segmented: strategy=%s segments=%d", strategy.value, len(segments))
    return segments


def log_segment_summary(segments: Sequence[Segment]) -> None:
    """Log one debug line per segment boundary."""
    for seg in segments:
        logger.debug(
            "Segment %d id=%s heading=%s pages=%d-%d chars=%d: %s",
            seg.index,
            seg.stable_id,
            " > ".join(seg.heading_path),
            seg.page_range.start,
            seg.page_range.end,
            len(seg.content),
            shorten(normalize_text(seg.content), 80),
        )
