"""Shared test helpers for migrate-core."""
