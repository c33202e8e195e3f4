"""Artifact schema validation."""
