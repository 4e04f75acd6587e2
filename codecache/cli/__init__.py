"""codecache CLI — Typer-based, read-only inspection of a SQLite code cache.

All output uses Rich for formatted terminal display.
"""
