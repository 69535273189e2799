"""Link each active chunk to the few other chunks a reader would need next."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence

from .breaker import CircuitBreaker
from .errors import classify_error
from .llm import Generator, parse_json_payload
from .prompts import RELATE_SYSTEM_PROMPT, build_relate_prompt
from .retry import call_with_single_retry
from .schemas import Chunk, normalize_related_ids
from .store import FileChunkStore

logger = logging.getLogger(__name__)


def clean_related(candidates: Sequence[object], chunk_id: str, known_ids: Sequence[str], max_related: int) -> List[str]:
    """Keep string ids that exist and are not the chunk itself, capped at ``max_related``."""
    known = set(known_ids)
    ids = normalize_related_ids([item for item in candidates if isinstance(item, str)])
    return [cid for cid in ids if cid in known and cid != chunk_id][:max_related]


def find_related(
    target: Chunk,
    others: Sequence[Chunk],
    generator: Generator,
    breaker: CircuitBreaker,
    max_related: int = 3,
    max_output_tokens: int = 16000,
    delay_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[List[str]]:
    """
    Ask the generation service which of ``others`` relate to ``target``.

    Returns:
        Cleaned related ids, or None when the call or its parsing failed
    """
    prompt = build_relate_prompt(target, others, max_related)
    try:
        raw = call_with_single_retry(
            lambda: generator.generate(RELATE_SYSTEM_PROMPT, prompt, max_output_tokens),
            breaker,
            delay_s=delay_s,
            sleep=sleep,
        )
        parsed = parse_json_payload(raw)
    except Exception as exc:
        logger.warning("Could not relate %s [%s]: %s", target.chunk_id, classify_error(exc).value, exc)
        return None

    if not isinstance(parsed, list):
        logger.warning("Related chunks response for %s is not a list", target.chunk_id)
        return None
    return clean_related(parsed, target.chunk_id, [chunk.chunk_id for chunk in others], max_related)


def link_related(
    store: FileChunkStore,
    generator: Generator,
    breaker: CircuitBreaker,
    max_related: int = 3,
    max_output_tokens: int = 16000,
    delay_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[str]:
    """
    Fill ``related_chunks`` for every active chunk.

    Only chunks whose list actually changes are rewritten. A chunk whose
    lookup fails keeps its previous list.

    Returns:
        Ids of chunks that were rewritten
    """
    active = store.list_active()
    if len(active) < 2:
        logger.info("Fewer than two active chunks; nothing to relate")
        return []

    updated: List[str] = []
    for target in active:
        others = [chunk for chunk in active if chunk.chunk_id != target.chunk_id]
        related = find_related(target, others, generator, breaker, max_related, max_output_tokens, delay_s, sleep)
        if related is None or related == target.related_chunks:
            continue
        store.put(target.model_copy(update={"related_chunks": related}))
        updated.append(target.chunk_id)
        logger.debug("%s -> %s", target.chunk_id, ", ".join(related) or "(none)")

    logger.info("Related chunks updated for %d of %d chunk(s)", len(updated), len(active))
    return updated
