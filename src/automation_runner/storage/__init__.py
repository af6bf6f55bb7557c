"""Persistence layer: SQLModel tables, SQLite engine policy and migrations."""
