"""Base exception for the squad core."""

from __future__ import annotations


class MissionControlError(Exception):
    """Base class for configuration and orchestration errors."""
