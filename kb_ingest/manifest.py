"""
Source provenance tracking.

``source-manifest.json`` maps each ingested source path to the content hash
it had when it was last extracted and the chunk ids that extraction produced.
It answers two questions before every extraction:

1. Has this source changed since it was last extracted? If not, skip it.
2. If it has, which chunks from the previous run are now stale?
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from pydantic import ValidationError

from .errors import StoreError
from .schemas import SourceManifestEntry

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "source-manifest.json"


class ManifestDecision(str, Enum):
    """What to do with a source before extracting it."""
    EXTRACT = "extract"
    SKIP = "skip"
    PURGE_AND_EXTRACT = "purge_and_extract"


def source_key(source_path: str) -> str:
    """Manifest key for a source path (normalized, forward slashes)."""
    return Path(os.path.normpath(str(source_path))).as_posix()


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SourceManifest:
    """
    In-memory view of ``source-manifest.json`` with at most one entry per source.

    Args:
        path: Location of the manifest file
        entries: Initial entries keyed by source path
    """

    def __init__(self, path: Path, entries: Optional[Dict[str, SourceManifestEntry]] = None) -> None:
        self.path = Path(path)
        self.entries: Dict[str, SourceManifestEntry] = dict(entries or {})

    @classmethod
    def load(cls, path: Path) -> "SourceManifest":
        """
        Load a manifest from disk; a missing file is an empty manifest.

        Raises:
            StoreError: If the file exists but cannot be read or parsed
        """
        path = Path(path)
        if not path.exists():
            return cls(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            entries = {
                key: SourceManifestEntry.model_validate(value)
                for key, value in raw.items()
            }
        except (OSError, ValueError, AttributeError, ValidationError) as exc:
            raise StoreError(f"Cannot read source manifest {path}: {exc}") from exc
        return cls(path, entries)

    def save(self) -> None:
        """
        Write the manifest atomically, keys sorted so unchanged content is byte-identical.

        Raises:
            StoreError: If the file cannot be written
        """
        payload = {
            key: self.entries[key].model_dump(mode="json")
            for key in sorted(self.entries)
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StoreError(f"Cannot write source manifest {self.path}: {exc}") from exc

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, source_path: object) -> bool:
        return isinstance(source_path, str) and source_key(source_path) in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.entries))

    def get(self, source_path: str) -> Optional[SourceManifestEntry]:
        return self.entries.get(source_key(source_path))

    def is_unchanged(self, source_path: str, content_hash: str) -> bool:
        """True when the source is recorded with this exact hash and produced chunks."""
        entry = self.get(source_path)
        return entry is not None and entry.content_hash == content_hash and bool(entry.produced_chunk_ids)

    def decide(self, source_path: str, content_hash: str) -> ManifestDecision:
        """
        Decide skip vs. reprocess vs. purge-and-reprocess for a source.

        A recorded source with the same hash and at least one chunk is skipped.
        A recorded source whose hash changed, or whose last extraction produced
        nothing, has its previous output purged before re-extraction.
        """
        entry = self.get(source_path)
        if entry is None:
            return ManifestDecision.EXTRACT
        if self.is_unchanged(source_path, content_hash):
            return ManifestDecision.SKIP
        return ManifestDecision.PURGE_AND_EXTRACT

    def record_extraction(
        self,
        source_path: str,
        content_hash: str,
        size_bytes: int,
        chunk_ids: List[str],
        extracted_at: Optional[str] = None,
    ) -> SourceManifestEntry:
        """Overwrite the entry for a source after a successful extraction."""
        entry = SourceManifestEntry(
            content_hash=content_hash,
            extracted_at=extracted_at or _utc_now(),
            produced_chunk_ids=list(chunk_ids),
            size_bytes=size_bytes,
        )
        self.entries[source_key(source_path)] = entry
        return entry

    def chunk_ids_for(self, source_path: str) -> List[str]:
        """Chunk ids produced by the last extraction of a source ([] if untracked)."""
        entry = self.get(source_path)
        return list(entry.produced_chunk_ids) if entry else []

    def find_source_for_chunk(self, chunk_id: str) -> Optional[str]:
        """Which source produced a chunk, or None when it is not tracked."""
        for key in sorted(self.entries):
            if chunk_id in self.entries[key].produced_chunk_ids:
                return key
        return None

    def remove_chunk(self, chunk_id: str) -> Optional[str]:
        """Forget a chunk id; returns the source it belonged to, if any."""
        source = self.find_source_for_chunk(chunk_id)
        if source is None:
            return None
        entry = self.entries[source]
        self.entries[source] = entry.model_copy(
            update={"produced_chunk_ids": [cid for cid in entry.produced_chunk_ids if cid != chunk_id]}
        )
        return source

    def summary_lines(self) -> List[str]:
        """Human-readable summary, one block per source."""
        if not self.entries:
            return [f"  (no entries in {self.path.name})"]

        lines: List[str] = []
        for key in sorted(self.entries):
            entry = self.entries[key]
            lines.append(f"  {os.path.basename(key)}")
            lines.append(f"       Chunks:    {len(entry.produced_chunk_ids)}")
            lines.append(f"       Extracted: {entry.extracted_at}")
            lines.append(f"       Size:      {entry.size_bytes / 1024:.1f} KB")
            lines.append(f"       Hash:      {entry.content_hash[:16]}...")
        return lines
