from __future__ import annotations
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from portal.crud.deliverable import get_deliverable
from portal.services.activity import list_activity
from portal.services.store import DocumentStore

# Default folder: backend/var/audit-packs (override with AUDIT_PACK_DIR)
_DEFAULT_DIR = Path(__file__).resolve().parents[2] / "var" / "audit-packs"
PACK_DIR = Path(os.getenv("AUDIT_PACK_DIR", str(_DEFAULT_DIR)))


def generate_audit_pack(store: DocumentStore, deliverable_id: str) -> Dict[str, Any]:
    """Deliverable + feedback + revisions + activity history in one JSON document."""
    deliverable = get_deliverable(store, deliverable_id, expand=True)
    activity = list_activity(store, deliverable_id=deliverable_id, limit=None)

    body = deliverable.model_dump(mode="json", by_alias=True, exclude={"feedback", "revisions"})
    feedback = [f.model_dump(mode="json", by_alias=True) for f in deliverable.feedback]
    revisions = [r.model_dump(mode="json", by_alias=True) for r in deliverable.revisions]

    return {
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "deliverable": body,
        "feedback": feedback,
        "revisions": revisions,
        "activity": [a.model_dump(mode="json", by_alias=True) for a in activity],
        "summary": {
            "status": body["status"],
            "approvalStatus": body["approvalStatus"],
            "openFeedback": sum(1 for f in deliverable.feedback if not f.resolved),
            "revisionCount": len(revisions),
            "finalRevision": next((r["version"] for r in revisions if r["status"] == "final"), None),
            "activityCount": len(activity),
        },
    }


def write_pack(deliverable_id: str, pack: Dict[str, Any], prefix: str = "audit-pack") -> Path:
    """
    Save a pack as pretty JSON.
    File name: <prefix>-deliverable-<id>-<UTC timestamp>.json
    """
    PACK_DIR.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    fp = PACK_DIR / f"{prefix}-deliverable-{deliverable_id}-{ts}.json"
    with fp.open("w", encoding="utf-8") as f:
        json.dump(pack, f, ensure_ascii=False, indent=2)
        f.write("\n")
    return fp
