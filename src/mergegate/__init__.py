"""mergegate - merge/deploy gate evaluation and provenance records."""

__version__ = "0.1.0"

from mergegate.errors import ConfigurationError, InvalidApproval, MergeGateError, PreconditionError  # noqa: E402
from mergegate.evaluator import evaluate  # noqa: E402
from mergegate.policy import default_gate_policy, load_policy  # noqa: E402
from mergegate.provenance import DirectoryProvenanceStore, InMemoryProvenanceStore, emit  # noqa: E402
from mergegate.types import (  # noqa: E402
    BuildMetadata,
    ChangeRequest,
    CheckResult,
    ExceptionRecord,
    GateDecision,
    GatePolicy,
    ProvenanceRecord,
)

__all__ = [
    "BuildMetadata",
    "ChangeRequest",
    "CheckResult",
    "ConfigurationError",
    "DirectoryProvenanceStore",
    "ExceptionRecord",
    "GateDecision",
    "GatePolicy",
    "InMemoryProvenanceStore",
    "InvalidApproval",
    "MergeGateError",
    "PreconditionError",
    "ProvenanceRecord",
    "__version__",
    "default_gate_policy",
    "emit",
    "evaluate",
    "load_policy",
]
