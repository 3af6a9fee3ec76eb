from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import PriceHistory

SIGNIFICANT_DROP_PERCENT = -5.0
UNCHANGED_EPSILON = 0.01


class Trend(str, Enum):
    DROP = "drop"
    RISE = "rise"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class PriceChange:
    """Change between two consecutive observations of a route's price.

    Negative ``change_percent`` means the price went down.
    """

    current_price: float
    previous_price: float

    @classmethod
    def from_history(cls, history: PriceHistory) -> Optional["PriceChange"]:
        current, previous = history.latest, history.previous
        if current is None or previous is None:
            return None
        return cls(current_price=current.price, previous_price=previous.price)

    @property
    def change_percent(self) -> float:
        if self.previous_price <= 0:
            return 0.0
        return (self.current_price - self.previous_price) / self.previous_price * 100

    @property
    def absolute_change(self) -> float:
        return self.current_price - self.previous_price

    @property
    def is_unchanged(self) -> bool:
        return abs(self.change_percent) < UNCHANGED_EPSILON

    @property
    def is_increase(self) -> bool:
        return self.change_percent > 0

    @property
    def is_decrease(self) -> bool:
        return self.change_percent < 0

    @property
    def is_significant_drop(self) -> bool:
        return self.change_percent <= SIGNIFICANT_DROP_PERCENT

    @property
    def trend(self) -> Trend:
        if self.is_unchanged:
            return Trend.UNCHANGED
        return Trend.RISE if self.is_increase else Trend.DROP

    @property
    def formatted(self) -> str:
        """``"0%"`` when unchanged, otherwise e.g. ``"+3.2%"`` or ``"-8.1%"``."""
        if self.is_unchanged:
            return "0%"
        prefix = "+" if self.is_increase else ""
        return f"{prefix}{self.change_percent:.1f}%"

    @property
    def arrow(self) -> str:
        if self.is_unchanged:
            return "—"
        return "▲" if self.is_increase else "▼"


__all__ = [
    "PriceChange",
    "Trend",
    "SIGNIFICANT_DROP_PERCENT",
    "UNCHANGED_EPSILON",
]
