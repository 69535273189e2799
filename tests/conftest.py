"""Shared fixtures for KB Ingest tests."""

import json
import re

import pytest

from kb_ingest.breaker import CircuitBreaker
from kb_ingest.config import Settings
from kb_ingest.prompts import QUALITY_SYSTEM_PROMPT, RELATE_SYSTEM_PROMPT

SCENARIO_TEXT = "ACCESS\nHow do I reset?\nClick reset.\n\fSECURITY\nWhat is 2FA?\nEnable it in settings."


def chunk_payload(topic, **overrides):
    """A generated chunk object as the model would return it."""
    payload = {
        "chunk_id": "model-suggested-id",
        "topic": topic,
        "summary": f"About {topic}.",
        "triggers": [f"How do I handle {topic}?"],
        "has_conditions": False,
        "escalation": None,
        "related_chunks": [],
        "status": "active",
        "context": f"Context for {topic}.",
        "response": f"Steps for {topic}.",
    }
    payload.update(overrides)
    return payload


class FakeGenerator:
    """
    Scripted generation service.

    Either replays ``responses`` in order (the last one repeats; exceptions are
    raised) or delegates to ``handler(system_prompt, user_prompt)``.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls = []

    def generate(self, system_prompt, user_prompt, max_output_tokens):
        self.calls.append((system_prompt, user_prompt, max_output_tokens))
        if self.handler is not None:
            item = self.handler(system_prompt, user_prompt)
        elif len(self.responses) > 1:
            item = self.responses.pop(0)
        else:
            item = self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


def section_handler(system_prompt, user_prompt):
    """One chunk per section, titled after the section heading; relations empty; quality passes."""
    if system_prompt == RELATE_SYSTEM_PROMPT:
        return "[]"
    if system_prompt == QUALITY_SYSTEM_PROMPT:
        return '{"passed": true}'
    match = re.search(r"SECTION HEADING: (.+)", user_prompt)
    topic = match.group(1).strip() if match else "Whole document"
    return "```json\n" + json.dumps(chunk_payload(topic)) + "\n```"


@pytest.fixture
def breaker():
    return CircuitBreaker(name="test", threshold=5, reset_s=30.0)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def settings(tmp_path):
    return Settings.for_data_dir(
        tmp_path / "data",
        min_segment_chars=5,
        max_segment_chars=8000,
        min_text_length_for_segmentation=20,
        retry_jitter=False,
        call_timeout_s=0,
    )


@pytest.fixture
def docs_dir(tmp_path):
    path = tmp_path / "docs"
    path.mkdir()
    return path
