"""Database schema and engine helpers."""
