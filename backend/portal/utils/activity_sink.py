"""JSONL mirror of the activity log.

One file per UTC day, named after the entry's own timestamp so a replayed or
late entry lands beside its neighbours. Lines are append-only.
"""
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

_DEFAULT_DIR = Path(__file__).resolve().parents[2] / "var" / "activity"
ACTIVITY_DIR = Path(os.getenv("ACTIVITY_DIR", str(_DEFAULT_DIR)))


def partition_for(entry: Dict[str, Any]) -> str:
    stamp = entry.get("timestamp")
    if isinstance(stamp, datetime):
        return stamp.astimezone(timezone.utc).strftime("%Y-%m-%d")
    if isinstance(stamp, str) and len(stamp) >= 10:
        return stamp[:10]
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def write_event(entry: Dict[str, Any]) -> Path:
    ACTIVITY_DIR.mkdir(parents=True, exist_ok=True)
    fp = ACTIVITY_DIR / f"{partition_for(entry)}.jsonl"
    line = json.dumps(entry, ensure_ascii=False, default=str)
    with fp.open("a", encoding="utf-8") as fh:
        fh.write(line + "\n")
    return fp


def read_events(day: str, deliverable_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Entries mirrored for ``day`` (YYYY-MM-DD) in write order."""
    fp = ACTIVITY_DIR / f"{day}.jsonl"
    if not fp.exists():
        return []
    out = []
    with fp.open(encoding="utf-8") as fh:
        for line in fh:
            if not line.strip():
                continue
            entry = json.loads(line)
            if deliverable_id is None or entry.get("deliverableId") == deliverable_id:
                out.append(entry)
    return out
