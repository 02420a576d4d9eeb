"""SQLite catalog store."""
