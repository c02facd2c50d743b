"""
Database connection layer.

Owns the Motor clients behind the mapped and direct access paths.
"""

from .connection import ConnectionManager

__all__ = ["ConnectionManager"]
