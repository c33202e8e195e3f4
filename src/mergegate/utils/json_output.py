"""JSON output utilities with schema validation."""

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mergegate.schemas.validator import validate_data


def _redact_long_strings(data: Any, max_len: int = 256) -> Any:
    """Redact long strings in data structure for quarantine.

    Args:
        data: Data to redact (dict, list, or primitive)
        max_len: Maximum string length before redaction

    Returns:
        Redacted copy of data
    """
    if isinstance(data, dict):
        return {k: _redact_long_strings(v, max_len) for k, v in data.items()}
    elif isinstance(data, list):
        return [_redact_long_strings(item, max_len) for item in data]
    elif isinstance(data, str) and len(data) > max_len:
        return {
            "_omitted": True,
            "_sha256": hashlib.sha256(data.encode("utf-8")).hexdigest(),
            "_len": len(data),
        }
    else:
        return data


def quarantine_invalid_json(
    *,
    data: dict,
    schema_name: str,
    error: Exception,
    quarantine_dir: Path,
    subject_id: str | None,
    intended_path: Path,
    allow_raw: bool,
) -> Path:
    """Write invalid JSON to quarantine with metadata.

    Args:
        data: Invalid data payload
        schema_name: Schema that validation failed against
        error: The validation exception
        quarantine_dir: Directory to write quarantine file
        subject_id: Optional change request id for the filename
        intended_path: Path where valid artifact would have been written
        allow_raw: If False, redact long strings to prevent data leaks

    Returns:
        Path to quarantine file
    """
    quarantine_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    subject_part = subject_id if subject_id else "no_subject"
    quarantine_path = quarantine_dir / f"{schema_name}__{subject_part}__{timestamp}.json"

    quarantine_data = data if allow_raw else _redact_long_strings(data)

    quarantine_record = {
        "schema_name": schema_name,
        "created_at": datetime.now(UTC).isoformat(),
        "subject_id": subject_id,
        "intended_path": str(intended_path),
        "error": str(error),
        "data": quarantine_data,
    }

    with open(quarantine_path, "w", encoding="utf-8") as f:
        json.dump(quarantine_record, f, indent=2, ensure_ascii=False)

    return quarantine_path


def validate_or_quarantine(
    *,
    data: dict,
    output_path: Path,
    schema_name: str,
    subject_id: str | None = None,
    quarantine_dir: Path | None = None,
    allow_raw_in_quarantine: bool = False,
) -> None:
    """Validate ``data`` against a schema; quarantine it and raise on failure.

    Raises:
        RuntimeError: If validation fails (after quarantining)
    """
    try:
        validate_data(data, schema_name, strict=True)
    except ValueError as e:
        qdir = quarantine_dir if quarantine_dir else (output_path.parent / "quarantine")
        quarantine_path = quarantine_invalid_json(
            data=data,
            schema_name=schema_name,
            error=e,
            quarantine_dir=qdir,
            subject_id=subject_id,
            intended_path=output_path,
            allow_raw=allow_raw_in_quarantine,
        )

        raise RuntimeError(
            f"Schema validation failed for {schema_name} at {output_path}. "
            f"Invalid data quarantined to {quarantine_path}"
        ) from e


def write_json_strict(
    *,
    data: dict,
    output_path: Path,
    schema_name: str,
    subject_id: str | None = None,
    quarantine_dir: Path | None = None,
    allow_raw_in_quarantine: bool = False,
) -> None:
    """Write JSON with strict schema validation and quarantine on failure.

    Raises:
        RuntimeError: If validation fails (after quarantining)
    """
    validate_or_quarantine(
        data=data,
        output_path=output_path,
        schema_name=schema_name,
        subject_id=subject_id,
        quarantine_dir=quarantine_dir,
        allow_raw_in_quarantine=allow_raw_in_quarantine,
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
