"""Utility functions for KB ingestion: hashing, slugs and stable identifiers."""

from __future__ import annotations

import hashlib
import os
import re
import unicodedata
from typing import List, Sequence, Union

MAX_SLUG_LEN = 60
SHORT_HASH_LEN = 8

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
_MULTI_HYPHEN_RE = re.compile(r"-{2,}")


def sha256_file(path: str) -> str:
    """Calculate SHA256 hash of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def sha256_text(text: str) -> str:
    """Calculate SHA256 hash of a text string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def safe_relpath(path: str, base: str) -> str:
    """Get relative path, falling back to absolute on error."""
    try:
        return os.path.relpath(path, base)
    except ValueError:
        return path


def normalize_text(text: str) -> str:
    """Normalize whitespace in text."""
    return " ".join(text.replace("\u00a0", " ").split())


def shorten(text: str, limit: int = 200) -> str:
    """Truncate text to limit with ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def slugify(value: Union[str, Sequence[str]], max_len: int = MAX_SLUG_LEN) -> str:
    """
    Turn a string or a heading path into a lowercase-hyphen slug.

    Path parts are joined with hyphens, non-alphanumerics collapse to a single
    hyphen and the result is clamped to ``max_len`` characters.
    """
    if isinstance(value, str):
        text = value
    else:
        text = "-".join(part for part in value if part)
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = _NON_SLUG_RE.sub("-", text.lower()).strip("-")
    slug = slug[:max_len].strip("-")
    return _MULTI_HYPHEN_RE.sub("-", slug)


def derive_id(anchor: Union[str, Sequence[str]], content: str) -> str:
    """
    Derive a deterministic ``{slug}-{hash}`` identifier.

    Args:
        anchor: Heading path or topic the identifier is named after
        content: Text whose SHA256 prefix makes the identifier content-addressable

    Returns:
        Identifier such as ``account-access-1a2b3c4d``; only the hash when the
        anchor slugifies to nothing
    """
    short_hash = sha256_text(content)[:SHORT_HASH_LEN]
    slug = slugify(anchor)
    identifier = f"{slug}-{short_hash}" if slug else short_hash
    return _MULTI_HYPHEN_RE.sub("-", identifier)


def derive_segment_id(heading_path: Sequence[str], content: str) -> str:
    """Stable identifier of a segment, keyed on its trimmed content."""
    return derive_id(list(heading_path), content.strip())


def derive_chunk_id(source: str, anchor: Union[str, Sequence[str]], content: str) -> str:
    """Stable chunk identifier scoped to the source document's basename."""
    return derive_id(anchor, f"{os.path.basename(source)}\n{content.strip()}")


def derive_topic_chunk_id(source: str, topic: str) -> str:
    """Chunk identifier for single-shot extraction, where only the topic anchors it."""
    return derive_id(topic, os.path.basename(source) + topic)


def with_ordinal_suffixes(ids: List[str]) -> List[str]:
    """Disambiguate repeated identifiers with ``-0``, ``-1`` ... suffixes; unique ones are untouched."""
    counts = {}
    for identifier in ids:
        counts[identifier] = counts.get(identifier, 0) + 1

    seen = {}
    result: List[str] = []
    for identifier in ids:
        if counts[identifier] == 1:
            result.append(identifier)
            continue
        ordinal = seen.get(identifier, 0)
        seen[identifier] = ordinal + 1
        result.append(f"{identifier}-{ordinal}")
    return result
