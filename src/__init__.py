"""Decisioning and experimentation core."""
