from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Dict, Iterable, Tuple

from .base import canonical_json, sha256_hexdigest


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _record_dedupe_key(rec: Dict) -> Tuple[str, str]:
    # Natural key first (product detail URL, category slug), content hash otherwise
    if rec.get("detail_url"):
        return "product", str(rec["detail_url"])
    if rec.get("slug"):
        return "category", str(rec["slug"])
    return "hash", sha256_hexdigest(canonical_json(rec))


def write_jsonl(records: Iterable[Dict], out_dir: str, filename_prefix: str) -> str:
    """Write records to a timestamped JSONL file, keeping the first record per natural key.

    Returns the path to the written file. Existing file will be appended.
    """
    ensure_dir(out_dir)
    dt = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    path = os.path.join(out_dir, f"{filename_prefix}-{dt}.jsonl")

    seen: set = set()
    with open(path, "a", encoding="utf-8") as f:
        for rec in records:
            key = _record_dedupe_key(rec)
            if key in seen:
                continue
            seen.add(key)
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")
    return path
