"""Persistence layer: SQLite tables, migrations and the document store."""
