"""Load and validate gate policy configuration."""

from __future__ import annotations

import os
from collections import Counter
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from mergegate.errors import (
    POLICY_REASON_INVALID,
    POLICY_REASON_MISSING,
    POLICY_REASON_PARSE_ERROR,
    ConfigurationError,
)
from mergegate.types import DEFAULT_REQUIRED_CHECKS, DEFAULT_SECURITY_CHECK, GatePolicy

MERGEGATE_POLICY_ENV = "MERGEGATE_POLICY"
DEFAULT_POLICY_RELATIVE_PATH = Path(".mergegate/policy.yaml")

# Keep this literal deterministic and sorted in write path.
POLICY_CONFIG_TEMPLATE: dict[str, Any] = {
    "required_checks": list(DEFAULT_REQUIRED_CHECKS),
    "min_approvals": 1,
    "require_conversation_resolution": True,
    "non_bypassable_checks": [],
    "critical_severity_blocks": True,
    "security_check": DEFAULT_SECURITY_CHECK,
    "designated_approvers": [],
}


def policy_path_for_repo(repo_root: Path) -> Path:
    """Return canonical policy file path for a repository."""
    return repo_root.resolve() / DEFAULT_POLICY_RELATIVE_PATH


def resolve_policy_path(policy_path: Path | None, repo_root: Path) -> Path:
    """Resolve the policy file: explicit path, then environment, then repo default."""
    if policy_path is not None:
        return policy_path.expanduser().resolve()
    env_path = os.getenv(MERGEGATE_POLICY_ENV, "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()
    return policy_path_for_repo(repo_root)


def ensure_default_policy(repo_root: Path, *, force: bool = False) -> Path:
    """Create default policy YAML deterministically."""
    output_path = policy_path_for_repo(repo_root)
    if output_path.exists() and not force:
        raise FileExistsError(f"Policy file already exists: {output_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    rendered = yaml.safe_dump(POLICY_CONFIG_TEMPLATE, sort_keys=True)
    output_path.write_text(rendered, encoding="utf-8")
    return output_path


def load_policy(path: Path) -> GatePolicy:
    """Load, normalize, and validate a policy file."""
    if not path.exists():
        raise ConfigurationError(
            f"Missing policy config at {path}. Run `mergegate policy init` first.",
            POLICY_REASON_MISSING,
        )

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"policy.yaml parse error: {exc}",
            POLICY_REASON_PARSE_ERROR,
        ) from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            "policy.yaml parse error: expected mapping at top level",
            POLICY_REASON_PARSE_ERROR,
        )

    return policy_from_dict(raw)


def policy_from_dict(raw: dict[str, Any]) -> GatePolicy:
    """Normalize a policy mapping with deterministic defaults."""
    required_checks = _normalize_string_list_preserve_order(
        raw.get("required_checks", list(DEFAULT_REQUIRED_CHECKS)),
        "required_checks",
    )
    non_bypassable = _normalize_string_list(raw.get("non_bypassable_checks"), "non_bypassable_checks")
    designated = _normalize_string_list(raw.get("designated_approvers"), "designated_approvers")

    min_approvals = _require_int(raw.get("min_approvals", 1), "min_approvals")
    security_check = _require_str(raw.get("security_check", DEFAULT_SECURITY_CHECK), "security_check").strip()

    policy = GatePolicy(
        required_checks=tuple(required_checks),
        min_approvals=min_approvals,
        require_conversation_resolution=_require_bool(
            raw.get("require_conversation_resolution", True), "require_conversation_resolution"
        ),
        non_bypassable_checks=tuple(non_bypassable),
        critical_severity_blocks=_require_bool(
            raw.get("critical_severity_blocks", True), "critical_severity_blocks"
        ),
        security_check=security_check,
        designated_approvers=tuple(designated),
    )
    validate_policy(policy)
    return policy


def validate_policy(policy: GatePolicy) -> None:
    """Reject thresholds and name lists the evaluator cannot apply."""
    if isinstance(policy.min_approvals, bool) or not isinstance(policy.min_approvals, int):
        raise ConfigurationError("min_approvals must be an integer", POLICY_REASON_INVALID)
    if policy.min_approvals < 1:
        raise ConfigurationError(
            f"min_approvals must be >= 1, got {policy.min_approvals}",
            POLICY_REASON_INVALID,
        )
    if not isinstance(policy.security_check, str) or not policy.security_check.strip():
        raise ConfigurationError("security_check must be a non-empty string", POLICY_REASON_INVALID)
    for field_name in ("required_checks", "non_bypassable_checks", "designated_approvers"):
        names = getattr(policy, field_name)
        if not isinstance(names, (tuple, list)):
            raise ConfigurationError(f"{field_name} must be an ordered sequence of names, got {type(names).__name__}")
        if any(not isinstance(name, str) or not name.strip() for name in names):
            raise ConfigurationError(f"{field_name} entries must be non-empty strings")
        duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
        if duplicates:
            raise ConfigurationError(f"{field_name} has duplicate entries: {', '.join(duplicates)}")


def policy_to_dict(policy: GatePolicy) -> dict[str, Any]:
    """Render a policy as a plain mapping (lists instead of tuples)."""
    return {key: list(value) if isinstance(value, tuple) else value for key, value in asdict(policy).items()}


def _require_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{field_name} must be an integer, got `{value}`")
    return value


def _require_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{field_name} must be true or false, got `{value}`")
    return value


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(f"{field_name} must be a string, got `{value}`")
    return value


def _normalize_string_list(value: Any, field_name: str) -> list[str]:
    """Normalize a list of strings with stable ordering."""
    return sorted(_normalize_string_list_preserve_order(value, field_name))


def _normalize_string_list_preserve_order(value: Any, field_name: str) -> list[str]:
    """Normalize list of strings preserving declaration order; duplicates are malformed."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigurationError(f"{field_name} must be a list of strings")

    normalized: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            raise ConfigurationError(f"{field_name} must be a list of strings")
        cleaned = item.strip()
        if not cleaned:
            continue
        if cleaned in seen:
            raise ConfigurationError(f"{field_name} has duplicate entries: {cleaned}")
        seen.add(cleaned)
        normalized.append(cleaned)

    return normalized


DEFAULT_GATE_POLICY = policy_from_dict(POLICY_CONFIG_TEMPLATE)


def default_gate_policy() -> GatePolicy:
    """Return the deterministic default gate policy."""

    return DEFAULT_GATE_POLICY
