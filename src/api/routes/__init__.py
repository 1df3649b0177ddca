"""API route modules."""
from __future__ import annotations

from . import (
    health,
    loops,
    organizations,
    people,
)

__all__ = [
    "health",
    "loops",
    "organizations",
    "people",
]
