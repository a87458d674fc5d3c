"""Integration tests for tandem (require Docker for PostgreSQL)."""
