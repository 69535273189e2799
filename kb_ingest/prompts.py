"""Prompt templates for chunk extraction, quality review and relation linking."""

from __future__ import annotations

from typing import Sequence

from .schemas import Chunk, ExtractionProfile, Segment

CHUNK_FIELDS = (
    "chunk_id, topic, summary, triggers, has_conditions, escalation, "
    "related_chunks, status, context, response"
)
OPTIONAL_FIELDS = (
    "conditions (only when has_conditions is true), constraints (only when hard "
    "system limits exist), escalation_detail"
)

PROCEDURE_SYSTEM_PROMPT = """You turn helpdesk documentation into knowledge chunks.
A chunk covers exactly one process, procedure, troubleshooting flow or how-to.

Each chunk is a JSON object with:
- chunk_id: short lowercase-hyphen slug
- topic: short title of the process
- summary: one or two sentences
- triggers: list of questions a customer might ask that this chunk answers
- has_conditions: true when the answer depends on the customer's situation
- conditions: the situations and how the answer differs (required when has_conditions is true)
- constraints: hard system limits, if any
- escalation: when a human must take over, or null
- related_chunks: []
- status: "active"
- context: background needed to understand the process
- response: the answer or the numbered steps
- escalation_detail: who to contact and what to include

Use only facts stated in the source text. Return only JSON, no markdown fences,
no explanation."""

QNA_SYSTEM_PROMPT = """You extract question-and-answer pairs from FAQ documents.
Every question in the source becomes one chunk, a JSON object with:
- chunk_id: short lowercase-hyphen slug
- topic: the question, rephrased as a short title
- summary: one sentence answer
- triggers: the question plus paraphrases a customer might type
- has_conditions: true when the answer depends on the customer's situation
- conditions: the situations and how the answer differs (required when has_conditions is true)
- constraints: hard system limits, if any
- escalation: when a human must take over, or null
- related_chunks: []
- status: "active"
- context: where in the product this applies
- response: the full answer

Use only facts stated in the source text. Return only a raw JSON array, no
markdown fences, no explanation."""

QUALITY_SYSTEM_PROMPT = """You are a knowledge base quality reviewer. Only fail a
criterion when there is a genuine blocker that stops a customer from completing
the process. Do not fail for wordiness, style or phrasing."""

RELATE_SYSTEM_PROMPT = """You are a knowledge base curator linking chunks that a
customer reading one chunk would genuinely need next."""


def system_prompt_for(profile: ExtractionProfile) -> str:
    if profile == ExtractionProfile.QNA:
        return QNA_SYSTEM_PROMPT
    return PROCEDURE_SYSTEM_PROMPT


def build_segment_prompt(segment: Segment, profile: ExtractionProfile) -> str:
    """User prompt scoped to one segment: heading path, page range and the segment text."""
    header = (
        f"SECTION HEADING: {' > '.join(segment.heading_path)}\n"
        f"SECTION PAGES: {segment.page_range.start}-{segment.page_range.end}\n\n"
        f"SECTION TEXT:\n{segment.content}\n\n---\n\n"
    )
    if profile == ExtractionProfile.QNA:
        return (
            "You are extracting Q&A pairs from one section of a document.\n\n"
            + header
            + "Extract ONLY the questions and answers found in this section.\n"
            f"Required fields for each chunk: {CHUNK_FIELDS}.\n"
            f"Optional fields: {OPTIONAL_FIELDS}.\n"
            "Return ONLY a raw JSON array. Start with [ and end with ]."
        )
    return (
        "You are extracting from one section of a document.\n\n"
        + header
        + "Extract the knowledge in this section only. Produce a SINGLE chunk JSON object.\n"
        f"Required fields: {CHUNK_FIELDS}.\n"
        f"Optional fields: {OPTIONAL_FIELDS}.\n"
        "Return ONLY valid JSON."
    )


def build_document_prompt(text: str, profile: ExtractionProfile) -> str:
    """User prompt for single-shot extraction over a whole document."""
    unit = "question and answer" if profile == ExtractionProfile.QNA else "process, procedure or how-to"
    return (
        "Read the whole document below carefully.\n\n"
        f"DOCUMENT TEXT:\n{text}\n\n---\n\n"
        f"Produce one chunk object per distinct {unit}; do not merge, do not skip.\n"
        f"Required fields for every chunk: {CHUNK_FIELDS}.\n"
        f"Optional fields: {OPTIONAL_FIELDS}.\n"
        "Return ONLY a raw JSON array. Start with [ and end with ]."
    )


def build_quality_prompt(chunk_markdown: str) -> str:
    return (
        f"CHUNK:\n{chunk_markdown}\n\n"
        "Evaluate CLARITY (topic unambiguous, steps do not contradict), CONSISTENCY "
        "(no factual contradictions between sections) and COMPLETENESS (no required "
        "step missing).\n\n"
        "Return ONLY this JSON:\n"
        '{"passed": true | false, '
        '"clarity": {"pass": true | false, "reason": "one sentence"}, '
        '"consistency": {"pass": true | false, "reason": "one sentence"}, '
        '"completeness": {"pass": true | false, "reason": "one sentence"}}'
    )


def build_relate_prompt(target: Chunk, others: Sequence[Chunk], max_related: int) -> str:
    candidates = "\n\n".join(
        f"- chunk_id: {chunk.chunk_id}\n  topic: {chunk.topic}\n  summary: {chunk.summary}"
        for chunk in others
    )
    return (
        "PRIMARY CHUNK:\n"
        f"chunk_id: {target.chunk_id}\ntopic: {target.topic}\nsummary: {target.summary}\n\n"
        f"OTHER CHUNKS:\n{candidates}\n\n"
        "Return ONLY a JSON array of chunk_id strings for chunks that are directly "
        f"related. At most {max_related}. If none are truly related, return []."
    )
