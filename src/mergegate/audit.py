"""Append-only JSONL audit log of gate decisions."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from mergegate.artifacts.canonical_json import canonical_dumps
from mergegate.report import decision_fingerprint, decision_to_dict
from mergegate.types import GateDecision


def append_decision(log_path: Path, decision: GateDecision) -> dict[str, Any]:
    """Append one decision entry; earlier lines are never touched."""
    entry = decision_to_dict(decision)
    entry["fingerprint"] = decision_fingerprint(decision)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "a", encoding="utf-8") as f:
        f.write(canonical_dumps(entry) + "\n")
    return entry


def read_decisions(log_path: Path) -> list[dict[str, Any]]:
    if not log_path.exists():
        return []
    with open(log_path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]
