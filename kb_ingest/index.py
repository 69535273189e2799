"""Guide index (``guide.yaml``): the compact catalogue of active chunks."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List

import yaml
from pydantic import ValidationError

from .errors import StoreError
from .schemas import GuideEntry
from .store import FileChunkStore
from .utils import safe_relpath

logger = logging.getLogger(__name__)

GUIDE_HEADER = (
    "# Knowledge Base Guide Index\n"
    "# Auto-generated from chunk front matter; do not edit manually\n"
    "# Source of truth: individual chunk .md files\n"
    "\n"
)

# Above either limit the whole guide no longer fits comfortably in a prompt.
WARN_CHUNK_COUNT = 80
WARN_BYTES = 50 * 1024


def serialize_guide(entries: Iterable[GuideEntry]) -> str:
    body = {"chunks": [entry.model_dump(mode="json") for entry in entries]}
    return GUIDE_HEADER + yaml.safe_dump(body, sort_keys=False, allow_unicode=True, width=1000)


def parse_guide(text: str) -> List[GuideEntry]:
    """
    Parse guide.yaml text into typed entries.

    Raises:
        ValueError: If the YAML is malformed or an entry fails validation
    """
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid guide YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("guide root is not a mapping")
    try:
        return [GuideEntry.model_validate(item) for item in data.get("chunks") or []]
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


class GuideIndex:
    """
    Reads and regenerates ``guide.yaml`` from the chunk store.

    Args:
        path: Location of guide.yaml
        warn_chunk_count: Entry count above which a size warning is logged
        warn_bytes: Serialized size above which a size warning is logged
    """

    def __init__(self, path: Path, warn_chunk_count: int = WARN_CHUNK_COUNT, warn_bytes: int = WARN_BYTES) -> None:
        self.path = Path(path)
        self.warn_chunk_count = warn_chunk_count
        self.warn_bytes = warn_bytes

    def load(self) -> List[GuideEntry]:
        """Entries currently on disk ([] when the guide does not exist yet)."""
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
            return parse_guide(text)
        except (OSError, ValueError) as exc:
            raise StoreError(f"Cannot read guide {self.path}: {exc}") from exc

    def save(self, entries: List[GuideEntry]) -> str:
        text = serialize_guide(entries)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StoreError(f"Cannot write guide {self.path}: {exc}") from exc
        self._warn_if_large(entries, text)
        return text

    def rebuild(self, store: FileChunkStore) -> List[GuideEntry]:
        """
        Regenerate the guide from every active chunk in the store.

        Returns:
            The entries written, sorted by chunk id
        """
        entries = [
            GuideEntry.from_chunk(chunk, self._file_ref(store, chunk.chunk_id))
            for chunk in store.list_active()
        ]
        self.save(entries)
        logger.info("Rebuilt %s with %d active chunk(s)", self.path.name, len(entries))
        return entries

    def remove(self, chunk_ids: Iterable[str]) -> int:
        """Drop entries for the given ids; returns how many were removed."""
        doomed = set(chunk_ids)
        if not doomed or not self.path.exists():
            return 0
        entries = self.load()
        kept = [entry for entry in entries if entry.chunk_id not in doomed]
        removed = len(entries) - len(kept)
        if removed:
            self.save(kept)
            logger.info("Removed %d entr%s from %s", removed, "y" if removed == 1 else "ies", self.path.name)
        return removed

    def _file_ref(self, store: FileChunkStore, chunk_id: str) -> str:
        path = safe_relpath(str(store.path_for(chunk_id)), str(self.path.parent))
        return Path(path).as_posix()

    def _warn_if_large(self, entries: List[GuideEntry], text: str) -> None:
        size = len(text.encode("utf-8"))
        if len(entries) > self.warn_chunk_count or size > self.warn_bytes:
            logger.warning(
                "Guide has %d chunks (%.1f KB); above %d chunks or %d KB it may not fit a model context window",
                len(entries),
                size / 1024,
                self.warn_chunk_count,
                self.warn_bytes // 1024,
            )
