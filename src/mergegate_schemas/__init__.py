"""JSON Schemas for mergegate artifacts (package data)."""
