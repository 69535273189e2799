"""KB Ingest - Deterministic segmentation and resilient ingestion of documents into knowledge chunks."""

from .breaker import CircuitBreaker, get_circuit_breaker_state
from .config import Settings, configure_logging, get_settings
from .errors import ErrorKind, StoreError, classify_error
from .extractor import ExtractionCoordinator
from .llm import LangChainGenerator
from .loader import KnowledgeBase, load_kb
from .manifest import SourceManifest
from .pipeline import Ingestor
from .schemas import (
    BreakerState,
    Chunk,
    ExtractionProfile,
    IngestReport,
    IngestResult,
    Segment,
)
from .segmenter import segment_document

__version__ = "0.1.0"

__all__ = [
    "Ingestor",
    "ExtractionCoordinator",
    "CircuitBreaker",
    "LangChainGenerator",
    "SourceManifest",
    "Settings",
    "get_settings",
    "configure_logging",
    "segment_document",
    "classify_error",
    "get_circuit_breaker_state",
    "load_kb",
    "KnowledgeBase",
    "ErrorKind",
    "StoreError",
    "BreakerState",
    "Chunk",
    "ExtractionProfile",
    "IngestReport",
    "IngestResult",
    "Segment",
]
