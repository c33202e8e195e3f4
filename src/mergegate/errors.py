"""Error types raised by the gate evaluator and provenance emitter.

A blocked gate is never an error; it is a normal ``GateDecision``. These
exceptions cover malformed input and misuse only.
"""

from __future__ import annotations

POLICY_REASON_MISSING = "POLICY_MISSING"
POLICY_REASON_PARSE_ERROR = "POLICY_PARSE_ERROR"
POLICY_REASON_INVALID = "POLICY_INVALID"
SNAPSHOT_REASON_INVALID = "SNAPSHOT_INVALID"
APPROVAL_REASON_SELF = "SELF_APPROVAL"
APPROVAL_REASON_EMPTY = "EMPTY_IDENTITY"
PRECONDITION_REASON_NOT_APPROVED = "DECISION_NOT_APPROVED"
PRECONDITION_REASON_MISMATCH = "DECISION_MISMATCH"


class MergeGateError(Exception):
    """Base class for mergegate errors."""

    reason_code: str

    def __init__(self, message: str, reason_code: str) -> None:
        super().__init__(message)
        self.reason_code = reason_code


class ConfigurationError(MergeGateError, ValueError):
    """Malformed policy or change request input; no decision is produced."""

    def __init__(self, message: str, reason_code: str = POLICY_REASON_INVALID) -> None:
        super().__init__(message, reason_code)


class InvalidApproval(MergeGateError, ValueError):
    """Approval rejected at data entry; the change request is left unchanged."""

    def __init__(self, message: str, reason_code: str = APPROVAL_REASON_SELF) -> None:
        super().__init__(message, reason_code)


class PreconditionError(MergeGateError, RuntimeError):
    """Provenance emission attempted without an approved decision."""

    def __init__(self, message: str, reason_code: str = PRECONDITION_REASON_NOT_APPROVED) -> None:
        super().__init__(message, reason_code)
