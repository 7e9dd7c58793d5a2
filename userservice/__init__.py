"""User directory service: a single read API plus its ordered start-up."""

from __future__ import annotations

from typing import Any

from .database import Database, resolve_database_url


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "resolve_database_url",
    "create_app",
]
