"""Shared dataclasses and type helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Union


@dataclass(slots=True, frozen=True)
class LoopStats:
    """Aggregate counts over non-archived loops."""

    total: int
    active: int
    closing: int
    closed: int
    total_sales: float
    closing_soon: Optional[int] = None

    def as_dict(self) -> Dict[str, Union[int, float, None]]:
        data: Dict[str, Union[int, float, None]] = {
            "total": self.total,
            "active": self.active,
            "closing": self.closing,
            "closed": self.closed,
            "total_sales": self.total_sales,
        }
        if self.closing_soon is not None:
            data["closing_soon"] = self.closing_soon
        return data

    def summary(self) -> str:
        """Return a compact human-readable summary for logging/CLI output."""
        parts = [
            f"total={self.total}",
            f"active={self.active}",
            f"closing={self.closing}",
            f"closed={self.closed}",
            f"total_sales={self.total_sales:,.2f}",
        ]
        if self.closing_soon is not None:
            parts.append(f"closing_soon={self.closing_soon}")
        return " | ".join(parts)

    def __str__(self) -> str:  # pragma: no cover - convenience for logging
        return self.summary()


__all__ = ["LoopStats"]
