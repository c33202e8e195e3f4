"""Load change request snapshots supplied by CI and the review system.

A snapshot is a YAML or JSON mapping::

    id: PR-101
    author: bob
    source_branch: feature/login
    target_branch: main
    required_approvals: 1
    conversations_resolved: true
    approvals: [alice]
    checks:
      - {name: lint, status: passed}
      - {name: security-scan, status: passed, severity: none}
    exceptions:
      - check_name: unit-test
        ticket_reference: JIRA-42
        approver_identity: alice
        justification: flaky on arm runners
        remediation_due_date: 2026-11-01
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from mergegate.errors import SNAPSHOT_REASON_INVALID, ConfigurationError
from mergegate.report import parse_timestamp
from mergegate.types import ChangeRequest, CheckResult, ExceptionRecord, check_results_from_list


def load_change_request(path: Path) -> ChangeRequest:
    """Read a snapshot file and build the change request it describes."""
    if not path.exists():
        raise ConfigurationError(f"Change request snapshot not found: {path}", SNAPSHOT_REASON_INVALID)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path.name} parse error: {exc}", SNAPSHOT_REASON_INVALID) from exc
    return change_request_from_dict(raw)


def change_request_from_dict(raw: Any) -> ChangeRequest:
    """Build a change request from a snapshot mapping.

    Approvals go through ``ChangeRequest.add_approval``, so a snapshot that
    lists the author as an approver raises ``InvalidApproval``.
    """
    if not isinstance(raw, dict):
        raise ConfigurationError("snapshot must be a mapping at top level", SNAPSHOT_REASON_INVALID)

    for key in ("id", "author", "source_branch", "target_branch"):
        if not isinstance(raw.get(key), str | int) or not str(raw[key]).strip():
            raise ConfigurationError(f"snapshot missing required `{key}`", SNAPSHOT_REASON_INVALID)

    required_approvals = raw.get("required_approvals", 1)
    if isinstance(required_approvals, bool) or not isinstance(required_approvals, int):
        raise ConfigurationError(
            f"required_approvals must be an integer, got `{required_approvals}`",
            SNAPSHOT_REASON_INVALID,
        )
    conversations_resolved = raw.get("conversations_resolved", False)
    if not isinstance(conversations_resolved, bool):
        raise ConfigurationError("conversations_resolved must be true or false", SNAPSHOT_REASON_INVALID)

    change_request = ChangeRequest(
        id=str(raw["id"]).strip(),
        author=str(raw["author"]).strip(),
        source_branch=str(raw["source_branch"]).strip(),
        target_branch=str(raw["target_branch"]).strip(),
        required_approvals=required_approvals,
        conversations_resolved=conversations_resolved,
        checks=check_results_from_list([_check_from_dict(c) for c in _as_list(raw.get("checks"), "checks")]),
    )

    for identity in _as_list(raw.get("approvals"), "approvals"):
        change_request.add_approval(str(identity))

    for entry in _as_list(raw.get("exceptions"), "exceptions"):
        change_request.add_exception(_exception_from_dict(entry))

    return change_request


def _as_list(value: Any, field_name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigurationError(f"{field_name} must be a list", SNAPSHOT_REASON_INVALID)
    return value


def _check_from_dict(entry: Any) -> CheckResult:
    if not isinstance(entry, dict) or "name" not in entry or "status" not in entry:
        raise ConfigurationError("each check needs `name` and `status`", SNAPSHOT_REASON_INVALID)

    timestamp = entry.get("timestamp")
    duration_ms = entry.get("duration_ms")
    if duration_ms is not None and (isinstance(duration_ms, bool) or not isinstance(duration_ms, int)):
        raise ConfigurationError(f"check `{entry['name']}` duration_ms must be an integer", SNAPSHOT_REASON_INVALID)

    severity = entry.get("severity")
    return CheckResult(
        name=str(entry["name"]).strip(),
        status=str(entry["status"]).strip().lower(),
        severity=str(severity).strip().lower() if severity is not None else None,
        timestamp=parse_timestamp(timestamp, f"checks.{entry['name']}.timestamp") if timestamp is not None else None,
        duration_ms=duration_ms,
    )


def _exception_from_dict(entry: Any) -> ExceptionRecord:
    if not isinstance(entry, dict) or "check_name" not in entry:
        raise ConfigurationError("each exception needs `check_name`", SNAPSHOT_REASON_INVALID)

    return ExceptionRecord(
        check_name=str(entry["check_name"]).strip(),
        ticket_reference=str(entry.get("ticket_reference") or "").strip(),
        approver_identity=str(entry.get("approver_identity") or "").strip(),
        justification=str(entry.get("justification") or "").strip(),
        remediation_due_date=_parse_date(entry.get("remediation_due_date")),
    )


def _parse_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ConfigurationError(
            f"remediation_due_date must be YYYY-MM-DD, got `{value}`",
            SNAPSHOT_REASON_INVALID,
        ) from exc
