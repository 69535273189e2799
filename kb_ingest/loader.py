"""Load an ingested knowledge base from disk."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .index import GuideIndex
from .manifest import MANIFEST_FILENAME, SourceManifest
from .schemas import Chunk, GuideEntry
from .store import FileChunkStore


@dataclass
class KnowledgeBase:
    """In-memory knowledge base representation."""
    chunks: Dict[str, Chunk]
    guide: List[GuideEntry]
    manifest: SourceManifest

    def active_chunks(self) -> List[Chunk]:
        return [self.chunks[entry.chunk_id] for entry in self.guide if entry.chunk_id in self.chunks]


def load_kb(data_dir: str, manifest_path: Optional[str] = None) -> KnowledgeBase:
    """
    Load a knowledge base from disk.

    Args:
        data_dir: Directory holding ``guide.yaml`` and ``chunks/`` (e.g. "data")
        manifest_path: Location of the source manifest (default:
            ``<data_dir>/source-manifest.json``)

    Returns:
        KnowledgeBase with every parseable chunk, the guide entries and the manifest

    Raises:
        FileNotFoundError: If guide.yaml or the chunks directory is missing
        StoreError: If the guide or manifest cannot be parsed
    """
    kb_dir = Path(data_dir)
    guide_file = kb_dir / "guide.yaml"
    chunks_dir = kb_dir / "chunks"

    if not guide_file.exists():
        raise FileNotFoundError(f"Guide file not found: {guide_file}")
    if not chunks_dir.is_dir():
        raise FileNotFoundError(f"Chunks directory not found: {chunks_dir}")

    guide = GuideIndex(guide_file).load()
    chunks = {chunk.chunk_id: chunk for chunk in FileChunkStore(chunks_dir).list_all()}
    manifest = SourceManifest.load(Path(manifest_path) if manifest_path else kb_dir / MANIFEST_FILENAME)

    return KnowledgeBase(chunks=chunks, guide=guide, manifest=manifest)
