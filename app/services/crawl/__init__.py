"""Catalog crawling and ingestion.

Structure:
- base.py: record types and hashing helpers
- fetcher.py: async HTTP fetch with typed failures
- extractor.py / linked_data.py: HTML and JSON-LD field extraction
- images.py: image URL canonicalization and gallery dedupe
- translation_memo.py: reuse of stored translations
- orchestrator.py / status.py: bounded-concurrency run and its status
- gateway.py: persistence contract (+ in-memory store)
- pipeline.py: JSONL staging writer
- runner.py: CLI entrypoint for manual runs
"""

__all__ = [
    "base",
    "orchestrator",
]
