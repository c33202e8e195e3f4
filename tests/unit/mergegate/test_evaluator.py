"""Gate evaluation rules: checks, exceptions, approvals, conversations."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta

import pytest

from mergegate.errors import ConfigurationError
from mergegate.evaluator import evaluate
from mergegate.types import ChangeRequest, CheckResult, ExceptionRecord, GatePolicy

DEFAULT_POLICY = GatePolicy()


def test_all_green_is_approved(green_change_request: ChangeRequest, now) -> None:
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.outcome == "approved"
    assert decision.blocking_reasons == ()
    assert decision.evaluated_at == now
    assert decision.change_request_id == "PR-101"


@pytest.mark.parametrize("missing", ["lint", "typecheck", "unit-test", "build", "security-scan"])
def test_missing_required_check_blocks(green_change_request: ChangeRequest, now, missing: str) -> None:
    del green_change_request.checks[missing]
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.outcome == "blocked"
    assert decision.blocking_reasons == (f"check {missing} not completed",)


def test_pending_check_is_not_completed(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="build", status="pending"))
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.blocking_reasons == ("check build not completed",)


def test_skipped_required_check_blocks_even_with_exception(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="lint", status="skipped"))
    green_change_request.add_exception(
        ExceptionRecord(check_name="lint", ticket_reference="OPS-1", approver_identity="alice")
    )
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.blocking_reasons == ("check lint skipped",)


def test_failed_unit_test_without_exception(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="unit-test", status="failed"))
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.outcome == "blocked"
    assert decision.blocking_reasons == ("check unit-test failed",)


def test_failed_unit_test_with_valid_exception(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="unit-test", status="failed"))
    green_change_request.add_exception(
        ExceptionRecord(
            check_name="unit-test",
            ticket_reference="JIRA-42",
            approver_identity="alice",
            justification="flaky on arm runners",
        )
    )
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.outcome == "approved"
    assert decision.excused_checks == ("unit-test",)


def test_exception_ignored_for_non_bypassable_check(green_change_request: ChangeRequest, now) -> None:
    policy = replace(DEFAULT_POLICY, non_bypassable_checks=("unit-test",))
    green_change_request.record_check(CheckResult(name="unit-test", status="failed"))
    green_change_request.add_exception(
        ExceptionRecord(check_name="unit-test", ticket_reference="JIRA-42", approver_identity="alice")
    )
    decision = evaluate(green_change_request, policy, now=now)
    assert decision.blocking_reasons == ("check unit-test failed",)
    assert decision.excused_checks == ()


@pytest.mark.parametrize(
    "record",
    [
        ExceptionRecord(check_name="unit-test", ticket_reference="", approver_identity="alice"),
        ExceptionRecord(check_name="unit-test", ticket_reference="JIRA-42", approver_identity="  "),
        ExceptionRecord(check_name="lint", ticket_reference="JIRA-42", approver_identity="alice"),
    ],
)
def test_malformed_or_mismatched_exception_does_not_excuse(
    green_change_request: ChangeRequest, now, record: ExceptionRecord
) -> None:
    green_change_request.record_check(CheckResult(name="unit-test", status="failed"))
    green_change_request.add_exception(record)
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.blocking_reasons == ("check unit-test failed",)


def test_any_valid_exception_in_sequence_excuses(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="unit-test", status="failed"))
    green_change_request.add_exception(
        ExceptionRecord(check_name="unit-test", ticket_reference="", approver_identity="alice")
    )
    green_change_request.add_exception(
        ExceptionRecord(check_name="unit-test", ticket_reference="JIRA-43", approver_identity="carol")
    )
    assert evaluate(green_change_request, DEFAULT_POLICY, now=now).approved


def test_critical_scan_with_past_remediation_date_blocks(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="security-scan", status="failed", severity="critical"))
    green_change_request.add_exception(
        ExceptionRecord(
            check_name="security-scan",
            ticket_reference="SEC-7",
            approver_identity="alice",
            remediation_due_date=now.date() - timedelta(days=1),
        )
    )
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.outcome == "blocked"
    assert decision.blocking_reasons == ("check security-scan failed",)


def test_critical_scan_due_today_is_not_future(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="security-scan", status="failed", severity="critical"))
    green_change_request.add_exception(
        ExceptionRecord(
            check_name="security-scan",
            ticket_reference="SEC-7",
            approver_identity="alice",
            remediation_due_date=now.date(),
        )
    )
    assert not evaluate(green_change_request, DEFAULT_POLICY, now=now).approved


def test_critical_scan_with_future_remediation_date_is_excused(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="security-scan", status="failed", severity="critical"))
    green_change_request.add_exception(
        ExceptionRecord(
            check_name="security-scan",
            ticket_reference="SEC-7",
            approver_identity="alice",
            remediation_due_date=date(2026, 11, 1),
        )
    )
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.approved
    assert decision.excused_checks == ("security-scan",)


def test_critical_scan_requires_designated_approver(green_change_request: ChangeRequest, now) -> None:
    policy = replace(DEFAULT_POLICY, designated_approvers=("sec-lead",))
    green_change_request.record_check(CheckResult(name="security-scan", status="failed", severity="critical"))
    green_change_request.add_exception(
        ExceptionRecord(
            check_name="security-scan",
            ticket_reference="SEC-7",
            approver_identity="alice",
            remediation_due_date=date(2026, 11, 1),
        )
    )
    assert not evaluate(green_change_request, policy, now=now).approved

    green_change_request.add_exception(
        ExceptionRecord(
            check_name="security-scan",
            ticket_reference="SEC-7",
            approver_identity="sec-lead",
            remediation_due_date=date(2026, 11, 1),
        )
    )
    assert evaluate(green_change_request, policy, now=now).approved


def test_passed_scan_with_critical_severity_blocks(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="security-scan", status="passed", severity="critical"))
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.blocking_reasons == ("check security-scan reported critical severity",)

    relaxed = replace(DEFAULT_POLICY, critical_severity_blocks=False)
    assert evaluate(green_change_request, relaxed, now=now).approved


def test_non_critical_failed_scan_needs_no_remediation_date(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="security-scan", status="failed", severity="high"))
    green_change_request.add_exception(
        ExceptionRecord(check_name="security-scan", ticket_reference="SEC-8", approver_identity="alice")
    )
    assert evaluate(green_change_request, DEFAULT_POLICY, now=now).approved


def test_insufficient_approvals(green_change_request: ChangeRequest, now) -> None:
    green_change_request.required_approvals = 2
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.blocking_reasons == ("insufficient approvals: have 1 need 2",)


def test_policy_min_approvals_wins_when_stricter(green_change_request: ChangeRequest, now) -> None:
    policy = replace(DEFAULT_POLICY, min_approvals=3)
    decision = evaluate(green_change_request, policy, now=now)
    assert decision.blocking_reasons == ("insufficient approvals: have 1 need 3",)


def test_unresolved_conversations(green_change_request: ChangeRequest, now) -> None:
    green_change_request.conversations_resolved = False
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now)
    assert decision.blocking_reasons == ("unresolved conversations",)

    lenient = replace(DEFAULT_POLICY, require_conversation_resolution=False)
    assert evaluate(green_change_request, lenient, now=now).approved


def test_all_reasons_collected_in_order(now) -> None:
    change_request = ChangeRequest(
        id="PR-7",
        author="bob",
        source_branch="feature/x",
        target_branch="main",
        required_approvals=2,
    )
    change_request.record_check(CheckResult(name="lint", status="failed"))
    change_request.record_check(CheckResult(name="build", status="pending"))

    decision = evaluate(change_request, DEFAULT_POLICY, now=now)
    assert decision.blocking_reasons == (
        "check lint failed",
        "check typecheck not completed",
        "check unit-test not completed",
        "check build not completed",
        "check security-scan not completed",
        "insufficient approvals: have 0 need 2",
        "unresolved conversations",
    )


def test_empty_required_checks_still_gates_approvals(now) -> None:
    change_request = ChangeRequest(id="PR-8", author="bob", source_branch="a", target_branch="main")
    change_request.conversations_resolved = True
    policy = replace(DEFAULT_POLICY, required_checks=())

    assert evaluate(change_request, policy, now=now).blocking_reasons == ("insufficient approvals: have 0 need 1",)
    change_request.add_approval("alice")
    assert evaluate(change_request, policy, now=now).approved


def test_unlisted_checks_are_ignored(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="e2e", status="pending"))
    green_change_request.record_check(CheckResult(name="lighthouse", status="failed"))
    assert evaluate(green_change_request, DEFAULT_POLICY, now=now).approved


def test_evaluation_is_repeatable_and_does_not_mutate(green_change_request: ChangeRequest, now) -> None:
    green_change_request.record_check(CheckResult(name="unit-test", status="failed"))
    before = (set(green_change_request.approvals), dict(green_change_request.checks))

    first = evaluate(green_change_request, DEFAULT_POLICY)
    second = evaluate(green_change_request, DEFAULT_POLICY)

    assert first.outcome == second.outcome
    assert first.blocking_reasons == second.blocking_reasons
    assert (green_change_request.approvals, green_change_request.checks) == before


def test_negative_required_approvals_is_configuration_error(green_change_request: ChangeRequest, now) -> None:
    green_change_request.required_approvals = -1
    with pytest.raises(ConfigurationError, match="required_approvals"):
        evaluate(green_change_request, DEFAULT_POLICY, now=now)


def test_invalid_policy_is_configuration_error(green_change_request: ChangeRequest, now) -> None:
    with pytest.raises(ConfigurationError, match="min_approvals"):
        evaluate(green_change_request, replace(DEFAULT_POLICY, min_approvals=0), now=now)
    with pytest.raises(ConfigurationError, match="duplicate"):
        evaluate(green_change_request, replace(DEFAULT_POLICY, required_checks=("lint", "lint")), now=now)


def test_unordered_policy_lists_are_configuration_errors(green_change_request: ChangeRequest, now) -> None:
    with pytest.raises(ConfigurationError, match="required_checks must be an ordered sequence"):
        evaluate(green_change_request, replace(DEFAULT_POLICY, required_checks=frozenset({"lint"})), now=now)
    with pytest.raises(ConfigurationError, match="non_bypassable_checks must be an ordered sequence"):
        evaluate(green_change_request, replace(DEFAULT_POLICY, non_bypassable_checks={"build"}), now=now)


def test_non_string_security_check_is_configuration_error(green_change_request: ChangeRequest, now) -> None:
    with pytest.raises(ConfigurationError, match="security_check"):
        evaluate(green_change_request, replace(DEFAULT_POLICY, security_check=None), now=now)


def test_check_keyed_under_wrong_name_is_configuration_error(green_change_request: ChangeRequest, now) -> None:
    green_change_request.checks["lint"] = CheckResult(name="typecheck", status="passed")
    with pytest.raises(ConfigurationError, match="stored under"):
        evaluate(green_change_request, DEFAULT_POLICY, now=now)


def test_naive_now_is_treated_as_utc(green_change_request: ChangeRequest, now) -> None:
    decision = evaluate(green_change_request, DEFAULT_POLICY, now=now.replace(tzinfo=None))
    assert decision.evaluated_at == now
