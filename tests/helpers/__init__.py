"""Shared test helpers (fake sandbox runtime, exec channels)."""
