"""
Chunk persistence: one markdown file per chunk.

Each file carries YAML front matter with the chunk's index fields followed by
its body sections::

    ---
    chunk_id: reset-password-1a2b3c4d
    source: helpdesk.pdf
    topic: Reset a password
    ...
    ---

    ## Context
    ...

    ## Response
    ...

``render_chunk_markdown`` and ``parse_chunk_markdown`` are the only code that
knows this format.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from .errors import StoreError
from .schemas import Chunk, ChunkStatus

logger = logging.getLogger(__name__)

FRONT_MATTER_FIELDS = (
    "chunk_id",
    "source",
    "topic",
    "summary",
    "triggers",
    "has_conditions",
    "escalation",
    "related_chunks",
    "status",
)

# Section heading -> Chunk field, in file order.
SECTIONS = (
    ("Context", "context"),
    ("Conditions", "conditions"),
    ("Constraints", "constraints"),
    ("Response", "response"),
    ("Escalation", "escalation_detail"),
)
REQUIRED_SECTIONS = ("context", "response")

_SECTION_RE = re.compile(r"^## (.+?)\s*$", re.MULTILINE)
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _dump_yaml(data: Dict[str, Any]) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, width=1000)


def render_record(record: Dict[str, Any]) -> str:
    """Render a chunk record (front matter fields plus section fields) as markdown."""
    front = {field: record.get(field) for field in FRONT_MATTER_FIELDS}
    front["triggers"] = list(front.get("triggers") or [])
    front["related_chunks"] = list(front.get("related_chunks") or [])
    lines = ["---", _dump_yaml(front).rstrip("\n"), "---", ""]

    for title, field in SECTIONS:
        value = record.get(field)
        if field == "conditions" and not record.get("has_conditions"):
            continue
        if not value:
            continue
        lines.extend([f"## {title}", "", str(value).strip(), ""])
    return "\n".join(lines)


def render_chunk_markdown(chunk: Chunk) -> str:
    return render_record(chunk.model_dump(mode="json"))


def parse_record(text: str) -> Dict[str, Any]:
    """
    Parse a chunk file into a plain dict without validating it.

    Raises:
        ValueError: If the front matter is missing or is not a YAML mapping
    """
    if not text.startswith("---"):
        raise ValueError("missing front matter")
    parts = text.split("\n---", 2)
    if len(parts) < 2:
        raise ValueError("unterminated front matter")
    header = parts[0][len("---"):]
    body = parts[1].split("\n", 1)[1] if "\n" in parts[1] else ""
    if len(parts) == 3:
        body = body + "\n---" + parts[2]

    try:
        front = yaml.safe_load(header) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid front matter: {exc}") from exc
    if not isinstance(front, dict):
        raise ValueError("front matter is not a mapping")

    record: Dict[str, Any] = dict(front)
    titles = {title.lower(): field for title, field in SECTIONS}
    matches = list(_SECTION_RE.finditer(body))
    for i, match in enumerate(matches):
        field = titles.get(match.group(1).strip().lower())
        if field is None:
            continue
        end = matches[i + 1].start() if i + 1 < len(matches) else len(body)
        content = body[match.end():end].strip()
        if content:
            record[field] = content
    return record


def parse_chunk_markdown(text: str) -> Chunk:
    """
    Parse and validate a chunk file.

    Raises:
        ValueError: If the file is malformed or fails schema validation
    """
    return Chunk.model_validate(parse_record(text))


class FileChunkStore:
    """
    Flat-file chunk store: ``<chunks_dir>/<chunk_id>.md``.

    Every filesystem failure surfaces as ``StoreError``.
    """

    def __init__(self, chunks_dir: Path) -> None:
        self.chunks_dir = Path(chunks_dir)

    def path_for(self, chunk_id: str) -> Path:
        if not _SAFE_ID_RE.match(chunk_id or ""):
            raise StoreError(f"Invalid chunk id: {chunk_id!r}")
        return self.chunks_dir / f"{chunk_id}.md"

    def ids(self) -> List[str]:
        """Ids of every chunk file, sorted."""
        if not self.chunks_dir.exists():
            return []
        try:
            names = os.listdir(self.chunks_dir)
        except OSError as exc:
            raise StoreError(f"Cannot list chunks in {self.chunks_dir}: {exc}") from exc
        return sorted(name[:-3] for name in names if name.endswith(".md"))

    def exists(self, chunk_id: str) -> bool:
        return self.path_for(chunk_id).exists()

    def read_text(self, chunk_id: str) -> Optional[str]:
        path = self.path_for(chunk_id)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Cannot read chunk {path}: {exc}") from exc

    def read_record(self, chunk_id: str) -> Optional[Dict[str, Any]]:
        """Unvalidated record of a chunk, or None when the file does not exist."""
        text = self.read_text(chunk_id)
        if text is None:
            return None
        try:
            return parse_record(text)
        except ValueError as exc:
            raise StoreError(f"Malformed chunk file for {chunk_id}: {exc}") from exc

    def write_text(self, chunk_id: str, text: str) -> Path:
        path = self.path_for(chunk_id)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.chunks_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StoreError(f"Cannot write chunk {path}: {exc}") from exc
        return path

    def put(self, chunk: Chunk) -> Path:
        """Write a chunk, replacing any previous version with the same id."""
        return self.write_text(chunk.chunk_id, render_chunk_markdown(chunk))

    def get(self, chunk_id: str) -> Optional[Chunk]:
        """
        Load one chunk.

        Returns:
            The chunk, or None when no file exists for ``chunk_id``

        Raises:
            StoreError: If the file exists but is not a valid chunk
        """
        text = self.read_text(chunk_id)
        if text is None:
            return None
        try:
            return parse_chunk_markdown(text)
        except (ValueError, ValidationError) as exc:
            raise StoreError(f"Malformed chunk file for {chunk_id}: {exc}") from exc

    def delete(self, chunk_id: str) -> bool:
        """Remove a chunk file; returns False when it was already gone."""
        path = self.path_for(chunk_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreError(f"Cannot delete chunk {path}: {exc}") from exc
        return True

    def list_all(self) -> List[Chunk]:
        """Every parseable chunk, sorted by id. Malformed files are logged and skipped."""
        chunks: List[Chunk] = []
        for chunk_id in self.ids():
            try:
                chunk = self.get(chunk_id)
            except StoreError as exc:
                logger.warning("Skipping %s: %s", chunk_id, exc)
                continue
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    def list_active(self) -> List[Chunk]:
        return [chunk for chunk in self.list_all() if chunk.status == ChunkStatus.ACTIVE]

    def set_status(self, chunk_id: str, status: ChunkStatus) -> bool:
        """
        Change a chunk's status in place, even when the rest of the file fails validation.

        Returns:
            True if the file changed
        """
        record = self.read_record(chunk_id)
        if record is None:
            raise StoreError(f"Chunk not found: {chunk_id}")
        if record.get("status") == status.value:
            return False
        record["status"] = status.value
        self.write_text(chunk_id, render_record(record))
        return True
