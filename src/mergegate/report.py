"""Serialize gate decisions and provenance records, and write decision artifacts."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mergegate import __version__
from mergegate.artifacts.canonical_json import fingerprint
from mergegate.errors import SNAPSHOT_REASON_INVALID, ConfigurationError
from mergegate.types import OUTCOMES, ChangeRequest, GateDecision, ProvenanceRecord
from mergegate.utils.json_output import write_json_strict

SCHEMA_VERSION = "1.0"
DECISION_JSON_FILENAME = "GATE_DECISION.json"
DECISION_MD_FILENAME = "GATE_DECISION.md"
DETERMINISTIC_TIMESTAMP = "1970-01-01T00:00:00Z"


def format_timestamp(value: datetime) -> str:
    """Render an instant as ISO-8601 UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse an ISO-8601 instant; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ConfigurationError(
                f"{field_name} must be an ISO-8601 timestamp, got `{value}`",
                SNAPSHOT_REASON_INVALID,
            ) from exc
    else:
        raise ConfigurationError(
            f"{field_name} must be an ISO-8601 timestamp, got `{value}`",
            SNAPSHOT_REASON_INVALID,
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def generated_at(timestamp_mode: str) -> str:
    if timestamp_mode == "deterministic":
        return DETERMINISTIC_TIMESTAMP
    return format_timestamp(datetime.now(UTC))


# Decisions


def decision_to_dict(decision: GateDecision) -> dict[str, Any]:
    return {
        "change_request_id": decision.change_request_id,
        "outcome": decision.outcome,
        "blocking_reasons": list(decision.blocking_reasons),
        "excused_checks": list(decision.excused_checks),
        "evaluated_at": format_timestamp(decision.evaluated_at),
    }


def decision_from_dict(data: dict[str, Any]) -> GateDecision:
    """Rebuild a decision from its serialized form (e.g. GATE_DECISION.json)."""
    if not isinstance(data, dict):
        raise ConfigurationError("decision must be a mapping", SNAPSHOT_REASON_INVALID)
    payload = data.get("decision", data)
    try:
        outcome = payload["outcome"]
        change_request_id = str(payload["change_request_id"])
        evaluated_at = parse_timestamp(payload["evaluated_at"], "decision.evaluated_at")
    except KeyError as exc:
        raise ConfigurationError(f"decision missing field {exc}", SNAPSHOT_REASON_INVALID) from exc
    if outcome not in OUTCOMES:
        raise ConfigurationError(
            f"decision.outcome must be one of {OUTCOMES}, got `{outcome}`",
            SNAPSHOT_REASON_INVALID,
        )
    return GateDecision(
        change_request_id=change_request_id,
        outcome=outcome,
        blocking_reasons=tuple(str(r) for r in payload.get("blocking_reasons", [])),
        evaluated_at=evaluated_at,
        excused_checks=tuple(str(c) for c in payload.get("excused_checks", [])),
    )


def decision_fingerprint(decision: GateDecision) -> str:
    """Hash of the decision content without its timestamp."""
    content = decision_to_dict(decision)
    content.pop("evaluated_at")
    return fingerprint(content)


def build_decision_payload(
    change_request: ChangeRequest,
    decision: GateDecision,
    timestamp_mode: str = "deterministic",
) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "mergegate_version": __version__,
        "generated_at": generated_at(timestamp_mode),
        "timestamp_mode": timestamp_mode,
        "change_request": {
            "id": change_request.id,
            "author": change_request.author,
            "source_branch": change_request.source_branch,
            "target_branch": change_request.target_branch,
            "approvals": sorted(change_request.approvals),
            "checks": {name: result.status for name, result in sorted(change_request.checks.items())},
        },
        "decision": decision_to_dict(decision),
        "fingerprint": decision_fingerprint(decision),
    }


def write_decision_artifacts(
    change_request: ChangeRequest,
    decision: GateDecision,
    out_dir: Path,
    timestamp_mode: str = "deterministic",
) -> tuple[Path, Path]:
    """Write GATE_DECISION.json and GATE_DECISION.md into ``out_dir``."""
    out_dir.mkdir(parents=True, exist_ok=True)
    payload = build_decision_payload(change_request, decision, timestamp_mode)

    json_path = out_dir / DECISION_JSON_FILENAME
    write_json_strict(
        data=payload,
        output_path=json_path,
        schema_name="gate_decision",
        subject_id=change_request.id,
    )

    md_path = out_dir / DECISION_MD_FILENAME
    md_path.write_text(render_decision_markdown(change_request, decision, payload["fingerprint"]), encoding="utf-8")
    return json_path, md_path


def render_decision_markdown(change_request: ChangeRequest, decision: GateDecision, digest: str) -> str:
    status_icon = "✅ APPROVED" if decision.approved else "❌ BLOCKED"

    lines = [
        "# Merge Gate Decision",
        "",
        f"**Status:** {status_icon}",
        f"**Change request:** {change_request.id} ({change_request.source_branch} → {change_request.target_branch})",
        f"**Evaluated at:** {format_timestamp(decision.evaluated_at)}",
        "",
        "## Blocking Reasons",
        "",
    ]

    if decision.blocking_reasons:
        lines.extend(f"- {reason}" for reason in decision.blocking_reasons)
    else:
        lines.append("- none")

    lines.extend(["", "## Checks", ""])
    for name, result in sorted(change_request.checks.items()):
        severity = f" (severity: {result.severity})" if result.severity else ""
        lines.append(f"- `{name}`: {result.status}{severity}")

    if decision.excused_checks:
        lines.extend(["", "## Excused by Exception", ""])
        for name in decision.excused_checks:
            tickets = sorted({e.ticket_reference for e in change_request.exceptions if e.check_name == name})
            lines.append(f"- `{name}`: {', '.join(tickets)}")

    lines.extend([
        "",
        "## Approvals",
        "",
        f"- {', '.join(sorted(change_request.approvals)) or 'none'}",
        "",
        "---",
        f"*Decision fingerprint: {digest}*",
        "",
    ])
    return "\n".join(lines)


# Provenance


def provenance_to_dict(record: ProvenanceRecord) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "commit_sha": record.commit_sha,
        "branch": record.branch,
        "build_timestamp": format_timestamp(record.build_timestamp),
        "ci_run_id": record.ci_run_id,
        "approver_identities": list(record.approver_identities),
        "check_summary": dict(sorted(record.check_summary.items())),
        "artifact_location": record.artifact_location,
        "change_request_id": record.change_request_id,
    }


def provenance_from_dict(data: dict[str, Any]) -> ProvenanceRecord:
    try:
        return ProvenanceRecord(
            commit_sha=str(data["commit_sha"]),
            branch=str(data["branch"]),
            build_timestamp=parse_timestamp(data["build_timestamp"], "build_timestamp"),
            ci_run_id=str(data["ci_run_id"]),
            approver_identities=tuple(str(a) for a in data["approver_identities"]),
            check_summary={str(k): str(v) for k, v in data["check_summary"].items()},
            artifact_location=str(data["artifact_location"]),
            change_request_id=str(data["change_request_id"]),
        )
    except KeyError as exc:
        raise ConfigurationError(f"provenance record missing field {exc}", SNAPSHOT_REASON_INVALID) from exc
