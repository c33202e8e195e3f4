"""Gate evaluator: decide whether a change request may merge or deploy."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from mergegate.errors import SNAPSHOT_REASON_INVALID, ConfigurationError
from mergegate.policy import validate_policy
from mergegate.types import ChangeRequest, CheckResult, ExceptionRecord, GateDecision, GatePolicy

logger = logging.getLogger(__name__)


def evaluate(
    change_request: ChangeRequest,
    policy: GatePolicy,
    *,
    now: datetime | None = None,
) -> GateDecision:
    """
    Evaluate every gate and collect all unmet conditions.

    Args:
        change_request: Snapshot of the change request; not modified
        policy: Gate policy to apply
        now: Evaluation instant (defaults to current UTC time). Also the
            reference point for remediation due dates.

    Returns:
        GateDecision, approved iff no blocking reasons were collected

    Raises:
        ConfigurationError: If the policy or change request is malformed
    """
    validate_policy(policy)
    _validate_change_request(change_request)

    evaluated_at = _as_utc(now) if now is not None else datetime.now(UTC)

    reasons: list[str] = []
    excused: list[str] = []

    # Gate 1: required checks, in policy order
    for name in policy.required_checks:
        result = change_request.checks.get(name)
        reason, was_excused = _check_gate(name, result, change_request.exceptions, policy, evaluated_at)
        if reason is not None:
            reasons.append(reason)
        elif was_excused:
            excused.append(name)

    # Gate 2: approvals
    have = len(change_request.approvals)
    need = max(change_request.required_approvals, policy.min_approvals)
    if have < need:
        reasons.append(f"insufficient approvals: have {have} need {need}")

    # Gate 3: review conversations
    if policy.require_conversation_resolution and not change_request.conversations_resolved:
        reasons.append("unresolved conversations")

    outcome = "approved" if not reasons else "blocked"
    logger.debug(
        "change request %s evaluated: %s (%d reason(s))",
        change_request.id,
        outcome,
        len(reasons),
    )

    return GateDecision(
        change_request_id=change_request.id,
        outcome=outcome,
        blocking_reasons=tuple(reasons),
        evaluated_at=evaluated_at,
        excused_checks=tuple(excused),
    )


def _check_gate(
    name: str,
    result: CheckResult | None,
    exceptions: list[ExceptionRecord],
    policy: GatePolicy,
    now: datetime,
) -> tuple[str | None, bool]:
    """Return (blocking reason or None, whether an exception excused the check)."""
    if result is None or result.status == "pending":
        return f"check {name} not completed", False
    if result.status == "skipped":
        return f"check {name} skipped", False

    if result.status == "passed" and not _is_blocking_critical(result, policy):
        return None, False

    if any(_exception_is_valid(record, result, policy, now) for record in exceptions):
        return None, True

    if result.status == "failed":
        return f"check {name} failed", False
    return f"check {name} reported critical severity", False


def _is_critical_security(result: CheckResult | None, policy: GatePolicy) -> bool:
    return result is not None and result.name == policy.security_check and result.severity == "critical"


def _is_blocking_critical(result: CheckResult | None, policy: GatePolicy) -> bool:
    """A critical finding blocks even a passed scan when the policy says so."""
    return policy.critical_severity_blocks and _is_critical_security(result, policy)


def _exception_is_valid(
    record: ExceptionRecord,
    result: CheckResult,
    policy: GatePolicy,
    now: datetime,
) -> bool:
    if record.check_name != result.name:
        return False
    if result.name in policy.non_bypassable_checks:
        return False
    if not record.ticket_reference.strip() or not record.approver_identity.strip():
        return False

    if _is_critical_security(result, policy):
        due = record.remediation_due_date
        if due is None or due <= now.date():
            return False
        if policy.critical_severity_blocks and policy.designated_approvers:
            return record.approver_identity.strip() in policy.designated_approvers

    return True


def _validate_change_request(change_request: ChangeRequest) -> None:
    required = change_request.required_approvals
    if isinstance(required, bool) or not isinstance(required, int) or required < 0:
        raise ConfigurationError(
            f"change request {change_request.id}: required_approvals must be a non-negative integer, got {required}",
            SNAPSHOT_REASON_INVALID,
        )
    for key, result in change_request.checks.items():
        if key != result.name:
            raise ConfigurationError(
                f"change request {change_request.id}: check stored under `{key}` is named `{result.name}`",
                SNAPSHOT_REASON_INVALID,
            )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
