"""
Heading detection for plain extracted text.

Headings are recognised by an ordered list of ``HeadingRule`` entries, most
specific first. Table rows and page footers are filtered out before any rule
runs. Each rule is conservative: a body line taken for a heading silently
corrupts chunk boundaries, while a missed heading only merges two sections,
which the segment splitter corrects later.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

TOP_LEVEL = 1
SUB_LEVEL = 2

MAX_HEADING_CHARS = 80
MAX_HEADING_WORDS = 10

# Leading words of instructional sentences that are never headings
STEP_VERBS = frozenset(
    {
        "from", "select", "click", "if", "once", "go", "navigate", "open", "enter",
        "type", "press", "choose", "tap", "then", "when", "after", "before",
        "please", "check", "ensure", "make", "use", "scroll", "fill", "return",
        "see", "wait", "close", "save", "submit", "confirm",
    }
)

MINOR_WORDS = frozenset(
    {
        "a", "an", "the", "and", "or", "nor", "but", "of", "to", "in", "on", "for",
        "at", "by", "with", "vs", "via", "per", "from", "as", "into", "is",
    }
)

ADMONITIONS = frozenset({"NOTE", "NOTES", "WARNING", "TIP", "IMPORTANT", "CAUTION"})

_TRAILING_PUNCT = (".", ",", ";", ":", "!", "?")

_TABLE_ROW_RES = (
    re.compile(r"^\s*\|.*\|\s*$"),
    re.compile(r"\|.*\|"),
    re.compile(r"\t\S.*\t"),
    re.compile(r"\S\s{3,}\S.*\S\s{3,}\S"),
)
_FOOTER_RES = (
    re.compile(r"^--\s*\d*\s*((of|/)\s*\d+\s*)?--$", re.IGNORECASE),
    re.compile(r"^page\s+\d+(\s*(of|/)\s*\d+)?$", re.IGNORECASE),
    re.compile(r"^\d+\s*(of|/)\s*\d+$", re.IGNORECASE),
    re.compile(r"^\d+$"),
    re.compile(r"^(©|\(c\)|copyright\b)", re.IGNORECASE),
)

_MARKDOWN_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_TITLE_DASH_RE = re.compile(r"^(\S.*?)\s*[-–—]$")
_NUMBERED_RE = re.compile(r"^(\d{1,2})[.)]\s+(\S.*)$")
_NUMBERED_SUB_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.?\s+(\S.*)$")


@dataclass(frozen=True)
class HeadingMatch:
    text: str
    level: int
    rule: str


@dataclass(frozen=True)
class HeadingRule:
    """One heuristic: ``predicate`` decides, ``extractor`` yields the heading text."""
    name: str
    predicate: Callable[[str], bool]
    extractor: Callable[[str], str]
    level: Callable[[str], int]


def _words(text: str) -> List[str]:
    return text.split()


def _core(word: str) -> str:
    return word.strip("\"'“”‘’()[]")


def is_title_case(text: str) -> bool:
    """Every significant word starts with a capital (or digit); minor words may be lowercase."""
    words = [_core(word) for word in _words(text)]
    words = [word for word in words if word]
    if not words:
        return False
    for position, word in enumerate(words):
        first = word[0]
        if first.isdigit() or first.isupper():
            continue
        if position > 0 and word.lower() in MINOR_WORDS:
            continue
        return False
    return any(word[0].isupper() for word in words)


def _plausible(text: str) -> bool:
    return (
        0 < len(text) <= MAX_HEADING_CHARS
        and len(_words(text)) <= MAX_HEADING_WORDS
        and any(ch.isalpha() for ch in text)
        and not text.endswith(_TRAILING_PUNCT)
    )


def _starts_with_step_verb(text: str) -> bool:
    words = _words(text)
    return bool(words) and _core(words[0]).lower() in STEP_VERBS


def is_table_row(line: str) -> bool:
    return any(pattern.search(line) for pattern in _TABLE_ROW_RES)


def is_footer(line: str) -> bool:
    stripped = line.strip()
    return any(pattern.match(stripped) for pattern in _FOOTER_RES)


# Predicates / extractors

def _markdown(line: str) -> bool:
    match = _MARKDOWN_RE.match(line)
    return bool(match) and any(ch.isalpha() for ch in match.group(2))


def _markdown_text(line: str) -> str:
    return _MARKDOWN_RE.match(line).group(2).strip()


def _markdown_level(line: str) -> int:
    return TOP_LEVEL if len(_MARKDOWN_RE.match(line).group(1)) == 1 else SUB_LEVEL


def _title_dash(line: str) -> bool:
    match = _TITLE_DASH_RE.match(line)
    if not match:
        return False
    title = match.group(1).strip()
    return (
        _plausible(title)
        and len(_words(title)) >= 1
        and is_title_case(title)
        and not _starts_with_step_verb(title)
    )


def _title_dash_text(line: str) -> str:
    return _TITLE_DASH_RE.match(line).group(1).strip()


def _all_caps(line: str) -> bool:
    letters = [ch for ch in line if ch.isalpha()]
    return (
        _plausible(line)
        and len(letters) >= 3
        and all(ch.isupper() for ch in letters)
        and line.strip(":") not in ADMONITIONS
    )


def _numbered_sub(line: str) -> bool:
    match = _NUMBERED_SUB_RE.match(line)
    if not match:
        return False
    rest = match.group(3)
    return _plausible(rest) and rest[0].isupper() and not _starts_with_step_verb(rest)


def _numbered(line: str) -> bool:
    match = _NUMBERED_RE.match(line)
    if not match:
        return False
    rest = match.group(2)
    return (
        _plausible(rest)
        and rest[0].isupper()
        and is_title_case(rest)
        and not _starts_with_step_verb(rest)
    )


def _title_case(line: str) -> bool:
    return (
        _plausible(line)
        and len(_words(line)) >= 2
        and not _starts_with_step_verb(line)
        and is_title_case(line)
    )


def _identity(line: str) -> str:
    return line


def _top(_: str) -> int:
    return TOP_LEVEL


def _sub(_: str) -> int:
    return SUB_LEVEL


DEFAULT_RULES: Sequence[HeadingRule] = (
    HeadingRule("markdown", _markdown, _markdown_text, _markdown_level),
    HeadingRule("title_dash", _title_dash, _title_dash_text, _top),
    HeadingRule("all_caps", _all_caps, _identity, _top),
    HeadingRule("numbered_sub", _numbered_sub, _identity, _sub),
    HeadingRule("numbered", _numbered, _identity, _top),
    HeadingRule("title_case", _title_case, _identity, _sub),
)


def detect_heading(
    line: str,
    rules: Sequence[HeadingRule] = DEFAULT_RULES,
) -> Optional[HeadingMatch]:
    """
    Classify one line of text.

    Args:
        line: Raw line (surrounding whitespace is ignored)
        rules: Ordered heuristics; the first whose predicate holds wins

    Returns:
        HeadingMatch with the heading text and level (1 = top, 2 = sub), or
        None for body text, table rows and footers
    """
    stripped = line.strip()
    if not stripped or is_table_row(line) or is_footer(stripped):
        return None
    for rule in rules:
        if rule.predicate(stripped):
            return HeadingMatch(text=rule.extractor(stripped), level=rule.level(stripped), rule=rule.name)
    return None


def is_heading(line: str, rules: Sequence[HeadingRule] = DEFAULT_RULES) -> bool:
    return detect_heading(line, rules) is not None
