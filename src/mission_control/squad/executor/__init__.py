"""Executor backends that run spawned tasks outside the core process."""
