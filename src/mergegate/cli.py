"""mergegate CLI - evaluate merge gates and record provenance."""

import json
from datetime import UTC, datetime
from pathlib import Path

import typer
from rich.console import Console

from mergegate import __version__
from mergegate.audit import append_decision
from mergegate.errors import SNAPSHOT_REASON_INVALID, ConfigurationError, InvalidApproval, PreconditionError
from mergegate.evaluator import evaluate
from mergegate.policy import ensure_default_policy, load_policy, policy_to_dict, resolve_policy_path
from mergegate.provenance import DirectoryProvenanceStore, emit
from mergegate.report import (
    decision_fingerprint,
    decision_from_dict,
    parse_timestamp,
    provenance_to_dict,
    write_decision_artifacts,
)
from mergegate.schemas.validator import validate_data
from mergegate.snapshot import load_change_request
from mergegate.types import BuildMetadata, GateDecision

DEFAULT_STORE_RELATIVE_PATH = Path(".mergegate/provenance")

EXIT_OK = 0
EXIT_TOOLING_ERROR = 1
EXIT_POLICY_VIOLATION = 2

cli = typer.Typer(
    name="mergegate",
    help="mergegate - merge/deploy gate evaluation with provenance records",
    no_args_is_help=True,
)
console = Console()

policy_app = typer.Typer(help="Gate policy file management", no_args_is_help=True)
cli.add_typer(policy_app, name="policy")

provenance_app = typer.Typer(help="Provenance record emission and lookup", no_args_is_help=True)
cli.add_typer(provenance_app, name="provenance")


def normalize_timestamp_mode(timestamp_mode: str) -> str:
    """Normalize CLI timestamp modes to artifact timestamp modes."""
    normalized = timestamp_mode.strip().lower()
    if normalized == "deterministic":
        return normalized
    if normalized in {"wallclock", "now"}:
        return "wallclock"
    raise ValueError(
        f"Unsupported timestamp mode: {timestamp_mode}. "
        "Expected one of: deterministic, now, wallclock."
    )


def _version_option_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show mergegate version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Evaluate merge gates and record provenance."""


@policy_app.command(name="init")
def policy_init(
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing policy file"),
) -> None:
    """Write the default policy to .mergegate/policy.yaml."""
    try:
        path = ensure_default_policy(repo_root, force=force)
    except FileExistsError as e:
        typer.echo(f"❌ {e} (use --force to overwrite)", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from e
    console.print(f"[green]✓ Policy written:[/green] {path}")


@policy_app.command(name="show")
def policy_show(
    policy: Path | None = typer.Option(None, "--policy", help="Policy file (default: $MERGEGATE_POLICY or .mergegate/policy.yaml)"),
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
) -> None:
    """Print the normalized policy as JSON."""
    try:
        gate_policy = load_policy(resolve_policy_path(policy, repo_root))
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from e
    typer.echo(json.dumps(policy_to_dict(gate_policy), indent=2, sort_keys=True))


@cli.command(name="evaluate")
def evaluate_cmd(
    change: Path = typer.Option(..., "--change", "-c", help="Change request snapshot (YAML or JSON)"),
    policy: Path | None = typer.Option(None, "--policy", help="Policy file (default: $MERGEGATE_POLICY or .mergegate/policy.yaml)"),
    repo_root: Path = typer.Option(Path("."), "--repo-root", help="Repository root"),
    out: Path | None = typer.Option(None, "--out", "-o", help="Directory for GATE_DECISION.json/.md"),
    audit_log: Path | None = typer.Option(None, "--audit-log", help="Append the decision to this JSONL audit log"),
    timestamp_mode: str = typer.Option(
        "deterministic",
        "--timestamp-mode",
        help="Timestamp mode for artifacts: deterministic, now, or wallclock",
    ),
    as_of: str | None = typer.Option(None, "--as-of", help="Evaluate as of this ISO-8601 instant"),
) -> None:
    """Evaluate the merge gate for one change request.

    Exit codes:
      0 - Approved
      2 - Blocked (policy violation)
      1 - Tooling or input error
    """
    try:
        mode = normalize_timestamp_mode(timestamp_mode)
        gate_policy = load_policy(resolve_policy_path(policy, repo_root))
        change_request = load_change_request(change)
        now = parse_timestamp(as_of, "--as-of") if as_of else None

        decision = evaluate(change_request, gate_policy, now=now)

        if out is not None:
            json_path, md_path = write_decision_artifacts(change_request, decision, out, mode)
        if audit_log is not None:
            append_decision(audit_log, decision)
    except (ConfigurationError, InvalidApproval) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from e
    except Exception as e:
        typer.echo(f"❌ Gate evaluation failed: {e}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from e

    typer.echo(f"\nmergegate: change request {change_request.id}")
    if decision.approved:
        console.print("[green]✅ APPROVED[/green]")
    else:
        console.print("[red]❌ BLOCKED[/red]")
        for reason in decision.blocking_reasons:
            typer.echo(f"  - {reason}")
    if decision.excused_checks:
        typer.echo(f"Excused by exception: {', '.join(decision.excused_checks)}")
    typer.echo(f"Fingerprint: {decision_fingerprint(decision)}")

    if out is not None:
        typer.echo("\nReports written to:")
        typer.echo(f"  {json_path}")
        typer.echo(f"  {md_path}")

    raise typer.Exit(code=EXIT_OK if decision.approved else EXIT_POLICY_VIOLATION)


def _load_decision(path: Path) -> GateDecision:
    """Read GATE_DECISION.json, refusing payloads that fail the gate_decision schema."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    is_valid, errors = validate_data(payload, "gate_decision", strict=False)
    if not is_valid:
        raise ConfigurationError(
            f"{path} is not a valid gate decision: " + "; ".join(errors),
            SNAPSHOT_REASON_INVALID,
        )
    return decision_from_dict(payload)


@provenance_app.command(name="emit")
def provenance_emit(
    change: Path = typer.Option(..., "--change", "-c", help="Change request snapshot (YAML or JSON)"),
    decision_path: Path = typer.Option(..., "--decision", help="GATE_DECISION.json from `mergegate evaluate`"),
    commit_sha: str = typer.Option(..., "--commit-sha", help="Merged commit SHA"),
    ci_run_id: str = typer.Option(..., "--ci-run-id", help="CI run identifier"),
    artifact_location: str = typer.Option(..., "--artifact-location", help="Where the built artifact lives"),
    build_timestamp: str | None = typer.Option(None, "--build-timestamp", help="ISO-8601 build time (default: now)"),
    branch: str | None = typer.Option(None, "--branch", help="Branch built (default: change request target)"),
    store: Path = typer.Option(DEFAULT_STORE_RELATIVE_PATH, "--store", help="Provenance store directory"),
) -> None:
    """Record provenance for an approved change request.

    Exit codes:
      0 - Record stored (or already present for this commit and run)
      2 - Decision is not approved
      1 - Tooling or input error
    """
    try:
        change_request = load_change_request(change)
        decision = _load_decision(decision_path)
        metadata = BuildMetadata(
            commit_sha=commit_sha.strip(),
            ci_run_id=ci_run_id.strip(),
            build_timestamp=(
                parse_timestamp(build_timestamp, "--build-timestamp") if build_timestamp else datetime.now(UTC)
            ),
            artifact_location=artifact_location.strip(),
            branch=branch,
        )
        record = emit(change_request, decision, metadata, DirectoryProvenanceStore(store))
    except PreconditionError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=EXIT_POLICY_VIOLATION) from e
    except (ConfigurationError, InvalidApproval) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from e
    except Exception as e:
        typer.echo(f"❌ Provenance emission failed: {e}", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR) from e

    console.print(f"[green]✓ Provenance recorded[/green] {record.commit_sha} (run {record.ci_run_id})")
    typer.echo(json.dumps(provenance_to_dict(record), indent=2, sort_keys=True))


@provenance_app.command(name="show")
def provenance_show(
    commit_sha: str = typer.Option(..., "--commit-sha", help="Commit SHA"),
    ci_run_id: str = typer.Option(..., "--ci-run-id", help="CI run identifier"),
    store: Path = typer.Option(DEFAULT_STORE_RELATIVE_PATH, "--store", help="Provenance store directory"),
) -> None:
    """Print a stored provenance record."""
    record = DirectoryProvenanceStore(store).get(commit_sha, ci_run_id)
    if record is None:
        typer.echo(f"❌ No provenance record for {commit_sha} (run {ci_run_id})", err=True)
        raise typer.Exit(code=EXIT_TOOLING_ERROR)
    typer.echo(json.dumps(provenance_to_dict(record), indent=2, sort_keys=True))


if __name__ == "__main__":
    cli()
