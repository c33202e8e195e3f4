"""Shared mergegate utilities."""
