"""HTTP surface: heartbeat ingestion and dashboard reads."""
