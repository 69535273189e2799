#!/usr/bin/env python3
"""Example: Ingest documents into a knowledge base."""

import os
import sys
from pathlib import Path

from langchain_community.chat_models import ChatOllama

from kb_ingest import Ingestor, LangChainGenerator, Settings, configure_logging


def main():
    # Configuration
    source_dir = os.getenv("SOURCE_DIR", "./docs")
    data_dir = os.getenv("DATA_DIR", "./data")
    profile = os.getenv("PROFILE", "procedure")
    llm_model = os.getenv("LLM_MODEL", "llama3.1")
    ollama_base_url = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")

    # Validate source directory
    if not os.path.exists(source_dir):
        print(f"Error: Source not found: {source_dir}")
        print("Set SOURCE_DIR environment variable or create ./docs directory")
        sys.exit(1)

    settings = Settings.for_data_dir(Path(data_dir))
    configure_logging(settings.log_level)

    print("=" * 60)
    print("Knowledge Base Ingestion")
    print("=" * 60)
    print(f"Source:           {source_dir}")
    print(f"Data directory:   {data_dir}")
    print(f"Profile:          {profile}")
    print(f"LLM model:        {llm_model}")
    print(f"Ollama base URL:  {ollama_base_url}")
    print(f"Segment length:   {settings.min_segment_chars}-{settings.max_segment_chars} chars")
    print(f"Retries per call: {settings.llm_retries}")
    print("=" * 60)
    print()

    # ChatOllama takes its output cap at construction time
    chat_model = ChatOllama(
        model=llm_model,
        base_url=ollama_base_url,
        num_predict=settings.max_output_tokens,
        temperature=0,
    )
    generator = LangChainGenerator(chat_model, max_tokens_kwarg=None)

    try:
        ingestor = Ingestor(settings=settings, generator=generator)
        report = ingestor.run([source_dir], profile=profile)
    except Exception as e:
        print(f"\nError during ingestion: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    print("Source manifest:")
    for line in ingestor.manifest.summary_lines():
        print(line)
    print()
    print(f"Circuit breaker:  {ingestor.breaker_state().value}")
    print(f"Guide index:      {settings.guide_path}")

    sys.exit(0 if report.success else 1)


if __name__ == "__main__":
    main()
