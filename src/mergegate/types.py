"""Gate domain types: checks, change requests, policy, decisions, provenance."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Literal

from mergegate.errors import (
    APPROVAL_REASON_EMPTY,
    APPROVAL_REASON_SELF,
    SNAPSHOT_REASON_INVALID,
    ConfigurationError,
    InvalidApproval,
)

CHECK_STATUSES: tuple[str, ...] = ("pending", "passed", "failed", "skipped")
SEVERITIES: tuple[str, ...] = ("none", "low", "medium", "high", "critical")
OUTCOMES: tuple[str, ...] = ("approved", "blocked")

DEFAULT_REQUIRED_CHECKS: tuple[str, ...] = (
    "lint",
    "typecheck",
    "unit-test",
    "build",
    "security-scan",
)
DEFAULT_SECURITY_CHECK = "security-scan"

Outcome = Literal["approved", "blocked"]


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one status check as reported by its runner."""

    name: str
    status: str
    severity: str | None = None  # security check only
    timestamp: datetime | None = None
    duration_ms: int | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigurationError("check name must be non-empty", SNAPSHOT_REASON_INVALID)
        if self.status not in CHECK_STATUSES:
            raise ConfigurationError(
                f"check `{self.name}` status must be one of {CHECK_STATUSES}, got `{self.status}`",
                SNAPSHOT_REASON_INVALID,
            )
        if self.severity is not None and self.severity not in SEVERITIES:
            raise ConfigurationError(
                f"check `{self.name}` severity must be one of {SEVERITIES}, got `{self.severity}`",
                SNAPSHOT_REASON_INVALID,
            )
        if self.duration_ms is not None and self.duration_ms < 0:
            raise ConfigurationError(f"check `{self.name}` duration_ms must be >= 0", SNAPSHOT_REASON_INVALID)


@dataclass(frozen=True)
class ExceptionRecord:
    """Documented, approved bypass of a failed check."""

    check_name: str
    ticket_reference: str
    approver_identity: str
    justification: str = ""
    remediation_due_date: date | None = None


@dataclass
class ChangeRequest:
    """A proposed merge and the review/check state gathered for it."""

    id: str
    author: str
    source_branch: str
    target_branch: str
    required_approvals: int = 1
    conversations_resolved: bool = False
    approvals: set[str] = field(default_factory=set)
    checks: dict[str, CheckResult] = field(default_factory=dict)
    exceptions: list[ExceptionRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        initial, self.approvals = self.approvals, set()
        for identity in initial:
            self.add_approval(identity)

    def add_approval(self, identity: str) -> None:
        """Record a reviewer approval. Repeat approvals by one reviewer count once."""
        cleaned = identity.strip() if isinstance(identity, str) else ""
        if not cleaned:
            raise InvalidApproval(
                f"change request {self.id}: approval identity must be non-empty",
                APPROVAL_REASON_EMPTY,
            )
        if cleaned == self.author.strip():
            raise InvalidApproval(
                f"change request {self.id}: author `{cleaned}` cannot approve their own change",
                APPROVAL_REASON_SELF,
            )
        self.approvals.add(cleaned)

    def record_check(self, result: CheckResult) -> None:
        """Store the latest result for a check, replacing any earlier one."""
        self.checks[result.name] = result

    def add_exception(self, record: ExceptionRecord) -> None:
        self.exceptions.append(record)


def check_results_from_list(results: list[CheckResult]) -> dict[str, CheckResult]:
    """Index check results by name, refusing duplicate names."""
    indexed: dict[str, CheckResult] = {}
    for result in results:
        if result.name in indexed:
            raise ConfigurationError(f"duplicate check name `{result.name}`", SNAPSHOT_REASON_INVALID)
        indexed[result.name] = result
    return indexed


@dataclass(frozen=True)
class GatePolicy:
    """Branch protection rules applied by the evaluator."""

    required_checks: tuple[str, ...] = DEFAULT_REQUIRED_CHECKS
    min_approvals: int = 1
    require_conversation_resolution: bool = True
    non_bypassable_checks: tuple[str, ...] = ()
    critical_severity_blocks: bool = True
    security_check: str = DEFAULT_SECURITY_CHECK
    designated_approvers: tuple[str, ...] = ()


@dataclass(frozen=True)
class GateDecision:
    """Evaluator output for one change request at one instant."""

    change_request_id: str
    outcome: Outcome
    blocking_reasons: tuple[str, ...]
    evaluated_at: datetime
    excused_checks: tuple[str, ...] = ()

    @property
    def approved(self) -> bool:
        return self.outcome == "approved"


@dataclass(frozen=True)
class BuildMetadata:
    """Build facts supplied by CI when a merge or deploy happens."""

    commit_sha: str
    ci_run_id: str
    build_timestamp: datetime
    artifact_location: str
    branch: str | None = None


@dataclass(frozen=True)
class ProvenanceRecord:
    """Audit link from a deployed artifact back to its commit, approvals and checks."""

    commit_sha: str
    branch: str
    build_timestamp: datetime
    ci_run_id: str
    approver_identities: tuple[str, ...]
    check_summary: Mapping[str, str]
    artifact_location: str
    change_request_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "check_summary", MappingProxyType(dict(sorted(self.check_summary.items()))))

    @property
    def key(self) -> tuple[str, str]:
        return (self.commit_sha, self.ci_run_id)
