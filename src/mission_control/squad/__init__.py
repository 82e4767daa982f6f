"""Agent squad core: registry, budgets, escalation, liveness, spawning, audit.

Why a SQLite change journal instead of a message broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Executors are separate processes that talk to the core only through the
shared store. Journaling every write in the same transaction gives the
aggregator and the liveness monitor an ordered change stream that works
across processes without another operational dependency.
"""
