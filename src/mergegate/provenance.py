"""Provenance emission for approved merges and deploys.

Records are keyed by ``(commit_sha, ci_run_id)``. Emitting twice for one key
returns the stored record instead of writing a second one; the store's
``put_if_absent`` is the compare-and-set that makes this hold under
concurrent retries.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Protocol

from mergegate.artifacts.canonical_json import canonical_dumps, sha256_text
from mergegate.errors import (
    PRECONDITION_REASON_MISMATCH,
    PRECONDITION_REASON_NOT_APPROVED,
    PreconditionError,
)
from mergegate.report import parse_timestamp, provenance_from_dict, provenance_to_dict
from mergegate.types import BuildMetadata, ChangeRequest, GateDecision, ProvenanceRecord
from mergegate.utils.json_output import validate_or_quarantine

logger = logging.getLogger(__name__)


class ProvenanceStore(Protocol):
    """Append-only provenance storage with a unique key per record."""

    def get(self, commit_sha: str, ci_run_id: str) -> ProvenanceRecord | None: ...

    def put_if_absent(self, record: ProvenanceRecord) -> ProvenanceRecord:
        """Store ``record`` unless its key exists; return whichever record is stored."""
        ...


class InMemoryProvenanceStore:
    """Process-local store; the lock stands in for a unique constraint."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], ProvenanceRecord] = {}
        self._lock = threading.Lock()

    def get(self, commit_sha: str, ci_run_id: str) -> ProvenanceRecord | None:
        with self._lock:
            return self._records.get((commit_sha, ci_run_id))

    def put_if_absent(self, record: ProvenanceRecord) -> ProvenanceRecord:
        with self._lock:
            return self._records.setdefault(record.key, record)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class DirectoryProvenanceStore:
    """One canonical JSON file per key, created exclusively and never rewritten."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, commit_sha: str, ci_run_id: str) -> Path:
        key_hash = sha256_text(canonical_dumps([commit_sha, ci_run_id]))
        return self.root / f"{key_hash}.json"

    def get(self, commit_sha: str, ci_run_id: str) -> ProvenanceRecord | None:
        path = self.path_for(commit_sha, ci_run_id)
        if not path.exists():
            return None
        return provenance_from_dict(json.loads(path.read_text(encoding="utf-8")))

    def put_if_absent(self, record: ProvenanceRecord) -> ProvenanceRecord:
        path = self.path_for(record.commit_sha, record.ci_run_id)
        data = provenance_to_dict(record)
        validate_or_quarantine(
            data=data,
            output_path=path,
            schema_name="provenance_record",
            subject_id=record.change_request_id,
            quarantine_dir=self.root / "quarantine",
        )

        self.root.mkdir(parents=True, exist_ok=True)
        # Link a fully written temp file into place; the link fails if the key exists.
        tmp_path = self.root / f".{path.stem}.{uuid.uuid4().hex}.tmp"
        with open(tmp_path, "x", encoding="utf-8") as f:
            f.write(canonical_dumps(data))
        try:
            os.link(tmp_path, path)
        except FileExistsError:
            existing = self.get(record.commit_sha, record.ci_run_id)
            if existing is None:
                raise
            logger.debug("provenance record for %s already stored at %s", record.key, path)
            return existing
        finally:
            tmp_path.unlink()
        return record

    def list_records(self) -> list[ProvenanceRecord]:
        if not self.root.is_dir():
            return []
        records = [
            provenance_from_dict(json.loads(p.read_text(encoding="utf-8")))
            for p in sorted(self.root.glob("*.json"))
        ]
        return sorted(records, key=lambda r: (r.build_timestamp, r.commit_sha, r.ci_run_id))


def emit(
    change_request: ChangeRequest,
    decision: GateDecision,
    build_metadata: BuildMetadata,
    store: ProvenanceStore,
) -> ProvenanceRecord:
    """
    Emit the provenance record for an approved change request.

    Args:
        change_request: The change request that was merged or deployed
        decision: Its gate decision; must be approved
        build_metadata: Commit, CI run and artifact facts from the build
        store: Append-only provenance store

    Returns:
        The stored record. A repeat emit for the same (commit_sha, ci_run_id)
        returns the record stored first.

    Raises:
        PreconditionError: If the decision is not approved or belongs to
            another change request; nothing is written
    """
    if decision.outcome != "approved":
        raise PreconditionError(
            f"change request {change_request.id}: provenance requires an approved decision, "
            f"got `{decision.outcome}`",
            PRECONDITION_REASON_NOT_APPROVED,
        )
    if decision.change_request_id != change_request.id:
        raise PreconditionError(
            f"decision is for change request {decision.change_request_id}, not {change_request.id}",
            PRECONDITION_REASON_MISMATCH,
        )

    existing = store.get(build_metadata.commit_sha, build_metadata.ci_run_id)
    if existing is not None:
        logger.debug("provenance already emitted for %s/%s", build_metadata.commit_sha, build_metadata.ci_run_id)
        return existing

    record = ProvenanceRecord(
        commit_sha=build_metadata.commit_sha,
        branch=build_metadata.branch or change_request.target_branch,
        build_timestamp=parse_timestamp(build_metadata.build_timestamp, "build_timestamp"),
        ci_run_id=build_metadata.ci_run_id,
        approver_identities=tuple(sorted(change_request.approvals)),
        check_summary={name: result.status for name, result in sorted(change_request.checks.items())},
        artifact_location=build_metadata.artifact_location,
        change_request_id=change_request.id,
    )
    stored = store.put_if_absent(record)
    if stored is record:
        logger.info(
            "provenance recorded for change request %s at %s (run %s)",
            change_request.id,
            record.commit_sha,
            record.ci_run_id,
        )
    return stored
