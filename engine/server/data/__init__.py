"""SQLite storage, aggregation and time helpers for the trending server."""
