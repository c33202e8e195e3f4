"""Pytest configuration and fixtures for mergegate tests."""
from datetime import UTC, datetime
from pathlib import Path

import pytest

from mergegate.types import ChangeRequest, CheckResult

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def pytest_sessionfinish(session, exitstatus):
    """Fail the run if --cov was requested but no coverage data was collected."""
    cov_enabled = any("--cov" in str(arg) for arg in session.config.args)

    if not cov_enabled:
        return

    coverage_files = list(Path.cwd().glob(".coverage*"))

    if not coverage_files:
        pytest.exit(
            "Coverage was enabled but no data was collected. "
            "Check that tests import from 'mergegate' (the package) not 'src/mergegate' (filesystem path).",
            returncode=1
        )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def green_change_request() -> ChangeRequest:
    """All default required checks passed, one approval, conversations resolved."""
    change_request = ChangeRequest(
        id="PR-101",
        author="bob",
        source_branch="feature/login",
        target_branch="main",
        required_approvals=1,
        conversations_resolved=True,
    )
    for name in ("lint", "typecheck", "unit-test", "build"):
        change_request.record_check(CheckResult(name=name, status="passed"))
    change_request.record_check(CheckResult(name="security-scan", status="passed", severity="none"))
    change_request.add_approval("alice")
    return change_request
