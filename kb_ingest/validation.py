"""Post-extraction checks: structural validation and an optional model-based quality gate."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from pydantic import ValidationError

from .breaker import CircuitBreaker
from .errors import MalformedResponseError, StoreError, classify_error
from .llm import Generator, parse_json_payload
from .prompts import QUALITY_SYSTEM_PROMPT, build_quality_prompt
from .retry import call_with_single_retry
from .schemas import Chunk, ChunkStatus
from .store import FileChunkStore, render_chunk_markdown

logger = logging.getLogger(__name__)

QUALITY_CRITERIA = ("clarity", "consistency", "completeness")


def structural_problems(record: dict) -> List[str]:
    """
    Problems that make a stored chunk unfit to serve, one message per field.

    Returns:
        [] for a sound chunk
    """
    try:
        chunk = Chunk.model_validate(record)
    except ValidationError as exc:
        return [
            f"{'.'.join(str(part) for part in issue['loc']) or '(root)'}: {issue['msg']}"
            for issue in exc.errors()
        ]
    if chunk.has_conditions and not chunk.conditions:
        return ["conditions: required when has_conditions is true"]
    return []


def quality_verdict(
    chunk: Chunk,
    generator: Generator,
    breaker: CircuitBreaker,
    max_output_tokens: int = 16000,
    delay_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[bool]:
    """
    Ask the generation service whether a chunk passes the quality criteria.

    Returns:
        True or False, False for an unparseable verdict, and None when the
        service could not be reached (the chunk is then left as it is)
    """
    prompt = build_quality_prompt(render_chunk_markdown(chunk))
    try:
        raw = call_with_single_retry(
            lambda: generator.generate(QUALITY_SYSTEM_PROMPT, prompt, max_output_tokens),
            breaker,
            delay_s=delay_s,
            sleep=sleep,
        )
    except Exception as exc:
        logger.error("Quality check for %s failed [%s]: %s", chunk.chunk_id, classify_error(exc).value, exc)
        return None

    try:
        verdict = parse_json_payload(raw)
    except MalformedResponseError as exc:
        logger.warning("Could not parse quality verdict for %s: %s", chunk.chunk_id, exc)
        return False
    if not isinstance(verdict, dict):
        logger.warning("Quality verdict for %s is not an object", chunk.chunk_id)
        return False

    for criterion in QUALITY_CRITERIA:
        detail = verdict.get(criterion)
        if isinstance(detail, dict) and detail.get("pass") is False:
            logger.info("  %s %s: %s", chunk.chunk_id, criterion, detail.get("reason", ""))
    return verdict.get("passed") is True


def validate_chunks(
    store: FileChunkStore,
    generator: Optional[Generator] = None,
    breaker: Optional[CircuitBreaker] = None,
    quality_gate: bool = False,
    max_output_tokens: int = 16000,
    delay_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    chunk_ids: Optional[List[str]] = None,
) -> List[str]:
    """
    Check active chunks and move failing ones to ``review``.

    Args:
        store: Chunk store to check
        generator: Generation service, required only for the quality gate
        breaker: Breaker guarding the generation service
        quality_gate: Also run the model-based quality review
        max_output_tokens: Output cap for quality review calls
        delay_s: Wait before the single retry of a quality call
        sleep: Sleep function (injectable for tests)
        chunk_ids: Restrict the check to these ids (default: every chunk)

    Returns:
        Ids of chunks moved to ``review``
    """
    flagged: List[str] = []
    passed: List[Chunk] = []

    for chunk_id in chunk_ids if chunk_ids is not None else store.ids():
        try:
            record = store.read_record(chunk_id)
        except StoreError as exc:
            logger.warning("Skipping unreadable chunk %s: %s", chunk_id, exc)
            continue
        if record is None or record.get("status", ChunkStatus.ACTIVE.value) != ChunkStatus.ACTIVE.value:
            continue
        problems = structural_problems(record)
        if problems:
            logger.warning("Chunk %s failed structural validation:", chunk_id)
            for problem in problems:
                logger.warning("  %s", problem)
            store.set_status(chunk_id, ChunkStatus.REVIEW)
            flagged.append(chunk_id)
            continue
        passed.append(Chunk.model_validate(record))

    logger.info("Structural validation: %d passed, %d failed", len(passed), len(flagged))

    if quality_gate and generator is not None and breaker is not None:
        for chunk in passed:
            if quality_verdict(chunk, generator, breaker, max_output_tokens, delay_s, sleep) is False:
                logger.warning("Chunk %s failed quality review; marking for review", chunk.chunk_id)
                store.set_status(chunk.chunk_id, ChunkStatus.REVIEW)
                flagged.append(chunk.chunk_id)

    return flagged
