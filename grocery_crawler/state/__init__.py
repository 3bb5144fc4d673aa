"""Локальное хранилище (SQLite)."""
