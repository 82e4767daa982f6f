"""Agent squad orchestration: budgets, liveness, spawning and activity audit."""

__version__ = "0.1.0"
