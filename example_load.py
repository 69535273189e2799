#!/usr/bin/env python3
"""Example: Load a knowledge base and browse its chunks."""

import os
import sys

from kb_ingest import load_kb


def main():
    data_dir = os.getenv("DATA_DIR", "./data")

    if not os.path.exists(data_dir):
        print(f"Error: Knowledge base not found: {data_dir}")
        print("Run example_ingest.py first or set DATA_DIR environment variable")
        sys.exit(1)

    print("=" * 60)
    print("Knowledge Base Browser")
    print("=" * 60)
    print(f"Data directory: {data_dir}")
    print()

    # Load KB
    print("Loading knowledge base...")
    kb = load_kb(data_dir)

    print("Loaded successfully")
    print(f"  - Guide entries: {len(kb.guide)}")
    print(f"  - Chunk files:   {len(kb.chunks)}")
    print(f"  - Sources:       {len(kb.manifest)}")
    print()

    # Interactive lookup loop
    print("=" * 60)
    print("Enter a keyword or chunk id (or 'quit' to exit)")
    print("=" * 60)
    print()

    while True:
        query = input("Query: ").strip()
        if not query or query.lower() in ("quit", "exit", "q"):
            break

        print()

        chunk = kb.chunks.get(query)
        if chunk:
            print(f"[{chunk.chunk_id}] {chunk.topic}  ({chunk.status.value})")
            print(f"    Source:  {kb.manifest.find_source_for_chunk(chunk.chunk_id) or chunk.source}")
            print(f"    Related: {', '.join(chunk.related_chunks) or '-'}")
            print()
            print(chunk.response)
            print()
            continue

        needle = query.lower()
        matches = [
            entry for entry in kb.guide
            if needle in entry.topic.lower()
            or needle in entry.summary.lower()
            or any(needle in trigger.lower() for trigger in entry.triggers)
        ]
        if not matches:
            print("No matching chunks.")
            print()
            continue

        for rank, entry in enumerate(matches[:5], start=1):
            summary = entry.summary
            if len(summary) > 150:
                summary = summary[:150].rstrip() + "..."
            print(f"[{rank}] {entry.chunk_id}")
            print(f"    Topic:   {entry.topic}")
            print(f"    Source:  {entry.source}")
            print(f"    Summary: {summary}")
            print()

    print("Goodbye!")


if __name__ == "__main__":
    main()
