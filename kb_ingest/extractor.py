"""Turn document text into validated chunks through the generation service."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .errors import classify_error
from .llm import Generator, parse_json_payload
from .prompts import build_document_prompt, build_segment_prompt, system_prompt_for
from .retry import RetryOrchestrator
from .schemas import Chunk, ChunkStatus, ExtractionProfile, Segment
from .segmenter import SegmentationStrategy, log_segment_summary, segment_document
from .utils import derive_chunk_id, derive_topic_chunk_id, with_ordinal_suffixes

logger = logging.getLogger(__name__)


def validate_items(items: Sequence[Any], ids: Sequence[str], source: str) -> List[Tuple[int, Chunk]]:
    """
    Validate generated objects against the Chunk schema.

    The deterministic ``ids`` replace whatever identifier the service
    suggested. Invalid objects are logged field by field and dropped; their
    siblings are kept. A chunk claiming conditions without a conditions
    section is kept with status ``review``.

    Returns:
        (position in the response, chunk) pairs for the objects that passed
    """
    validated: List[Tuple[int, Chunk]] = []
    for position, (item, chunk_id) in enumerate(zip(items, ids)):
        suggested = item.get("chunk_id") if isinstance(item, dict) else None
        if not isinstance(item, dict):
            logger.error("Dropping generated object %d for %s: not a JSON object", position, chunk_id)
            continue

        data: Dict[str, Any] = dict(item)
        data["chunk_id"] = chunk_id
        data["source"] = source
        if data.get("related_chunks") is None:
            data["related_chunks"] = []
        if data.get("has_conditions") is True and not data.get("conditions"):
            logger.warning(
                "Chunk %s has has_conditions=true but no conditions section; flagging for review",
                chunk_id,
            )
            data["status"] = ChunkStatus.REVIEW.value

        try:
            chunk = Chunk.model_validate(data)
        except ValidationError as exc:
            logger.error("Validation failed for %s (suggested id %s):", chunk_id, suggested or "none")
            for issue in exc.errors():
                field = ".".join(str(part) for part in issue["loc"]) or "(root)"
                logger.error("  %s: %s", field, issue["msg"])
            continue

        logger.info("Chunk %s validated (service suggested: %s)", chunk_id, suggested or "none")
        validated.append((position, chunk))
    return validated


class ExtractionCoordinator:
    """
    Produce chunks for one document.

    Text long enough to segment is split into segments and each segment gets
    its own generation call; otherwise, or when segmentation finds nothing,
    the whole text goes out in a single call. A unit whose call fails after
    all retries contributes zero chunks and never aborts its siblings.
    """

    def __init__(
        self,
        generator: Generator,
        retry: RetryOrchestrator,
        max_output_tokens: int = 16000,
        min_segment_chars: int = 300,
        max_segment_chars: int = 8000,
        lines_per_page: int = 300,
        min_text_length_for_segmentation: int = 200,
        strategy: Optional[SegmentationStrategy] = None,
    ) -> None:
        self.generator = generator
        self.retry = retry
        self.max_output_tokens = max_output_tokens
        self.min_segment_chars = min_segment_chars
        self.max_segment_chars = max_segment_chars
        self.lines_per_page = lines_per_page
        self.min_text_length_for_segmentation = min_text_length_for_segmentation
        self.strategy = strategy

    @classmethod
    def from_settings(cls, generator: Generator, retry: RetryOrchestrator, settings) -> "ExtractionCoordinator":
        return cls(
            generator,
            retry,
            max_output_tokens=settings.max_output_tokens,
            min_segment_chars=settings.min_segment_chars,
            max_segment_chars=settings.max_segment_chars,
            lines_per_page=settings.lines_per_page,
            min_text_length_for_segmentation=settings.min_text_length_for_segmentation,
        )

    def extract(
        self,
        text: str,
        source: str,
        profile: ExtractionProfile = ExtractionProfile.PROCEDURE,
    ) -> List[Chunk]:
        """
        Extract chunks from a document's text.

        Args:
            text: Extracted plain text ("" when the document has no text layer)
            source: Source path; its basename scopes chunk identifiers
            profile: Procedure or Q&A extraction

        Returns:
            Validated chunks with deterministic identifiers
        """
        if not text.strip():
            logger.warning("No text layer for %s; nothing to extract", os.path.basename(source))
            return []

        if len(text.strip()) > self.min_text_length_for_segmentation:
            title = os.path.splitext(os.path.basename(source))[0]
            segments = segment_document(
                text,
                doc_title=title,
                strategy=self.strategy,
                min_chars=self.min_segment_chars,
                max_chars=self.max_segment_chars,
                lines_per_page=self.lines_per_page,
            )
            log_segment_summary(segments)
            if segments:
                return self.extract_from_segments(segments, source, profile)
            logger.warning("Segmenter produced 0 segments for %s; using single-shot extraction", source)
        return self.extract_whole_document(text, source, profile)

    def extract_from_segments(
        self,
        segments: Sequence[Segment],
        source: str,
        profile: ExtractionProfile = ExtractionProfile.PROCEDURE,
    ) -> List[Chunk]:
        """One generation call per segment, in document order."""
        system_prompt = system_prompt_for(profile)
        basename = os.path.basename(source)
        chunks: List[Chunk] = []

        logger.info("Extracting %d segment(s) from %s (%s)", len(segments), basename, profile.value)
        for seg in segments:
            items = self._generate(system_prompt, build_segment_prompt(seg, profile), seg.stable_id)
            if not items:
                continue

            base_id = derive_chunk_id(source, seg.heading_path, seg.content)
            if len(items) == 1:
                ids = [base_id]
            else:
                ids = [f"{base_id}-{position}" for position in range(len(items))]
            chunks.extend(chunk for _, chunk in validate_items(items, ids, basename))
        return chunks

    def extract_whole_document(
        self,
        text: str,
        source: str,
        profile: ExtractionProfile = ExtractionProfile.PROCEDURE,
    ) -> List[Chunk]:
        """Single-shot extraction; identifiers anchor on each generated topic."""
        basename = os.path.basename(source)
        logger.info("Single-shot extraction for %s (%s)", basename, profile.value)
        items = self._generate(system_prompt_for(profile), build_document_prompt(text, profile), basename)
        if not items:
            return []

        ids = with_ordinal_suffixes(
            [
                derive_topic_chunk_id(source, str(item.get("topic") or "") if isinstance(item, dict) else "")
                for item in items
            ]
        )
        return [chunk for _, chunk in validate_items(items, ids, basename)]

    def _generate(self, system_prompt: str, user_prompt: str, label: str) -> List[Any]:
        try:
            payload = self.retry.call(
                self.generator.generate,
                system_prompt,
                user_prompt,
                self.max_output_tokens,
                parse=parse_json_payload,
            )
        except Exception as exc:
            logger.error(
                "Extraction for %s failed [%s], skipping unit: %s",
                label,
                classify_error(exc).value,
                exc,
            )
            return []

        items = payload if isinstance(payload, list) else [payload]
        logger.info("Parsed %d object(s) for %s", len(items), label)
        return items
