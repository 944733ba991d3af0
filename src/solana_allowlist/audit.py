from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Union

from .errors import ValidationError
from .models import Event
from .selection import DrawResult, pick_random

AUDIT_TOOL = "solana-allowlist"
AUDIT_VERSION = "1.0.0"


def build_audit(event: Event, result: DrawResult, seed: str, seed_source: str = "cli") -> Dict[str, Any]:
    """Everything needed for anyone to re-run a seeded random draw."""
    if result.seed_hash_hex is None:
        raise ValidationError("Only seeded random draws can be audited.", code="UNSEEDED_DRAW")
    return {
        "metadata": {
            "tool": AUDIT_TOOL,
            "version": AUDIT_VERSION,
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "event_id": event.id,
            "max_winners": event.max_winners,
            "reserved_spots": event.reserved_spots,
            "available_spots": result.available_spots,
            "seed": seed,
            "seed_source": seed_source,
            "seed_hash_hex": result.seed_hash_hex,
        },
        # Deterministic order; the shuffle runs over this list.
        "pool": list(result.pool_entry_ids),
        "winners": [
            {"entry_id": w.entry_id, "winner_id": w.id, "picked_by": w.picked_by}
            for w in result.winners
        ],
    }


def write_audit(path: str, audit: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(audit, f, indent=2)


def verify_audit(audit_or_path: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(audit_or_path, str):
        with open(audit_or_path, "r", encoding="utf-8") as f:
            audit = json.load(f)
    else:
        audit = audit_or_path

    meta = audit["metadata"]
    pool = list(audit["pool"])
    expected = [w["entry_id"] for w in audit["winners"]]

    if sorted(pool) != pool:
        raise ValidationError("Audit pool is not in canonical (sorted) order.", code="AUDIT_MISMATCH")

    recomputed, seed_hash_hex = pick_random(pool, len(expected), seed=meta["seed"])
    if seed_hash_hex != meta["seed_hash_hex"]:
        raise ValidationError(
            f"Seed hash mismatch: audit={meta['seed_hash_hex']} recomputed={seed_hash_hex}",
            code="AUDIT_MISMATCH",
        )
    if recomputed != expected:
        raise ValidationError(
            f"Winner mismatch: audit={expected} recomputed={recomputed}",
            code="AUDIT_MISMATCH",
        )

    return {
        "ok": True,
        "event_id": meta["event_id"],
        "seed_hash_hex": seed_hash_hex,
        "winners": recomputed,
        "pool_size": len(pool),
    }
