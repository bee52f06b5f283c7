"""Module for database models."""

from . import node  # noqa: F401

__all__ = [
    "node",
]
