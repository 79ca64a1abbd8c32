"""Scan orchestration."""
