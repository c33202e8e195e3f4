"""Deterministic artifact helpers."""

from mergegate.artifacts.canonical_json import canonical_dumps, fingerprint, sha256_text

__all__ = [
    "canonical_dumps",
    "fingerprint",
    "sha256_text",
]
