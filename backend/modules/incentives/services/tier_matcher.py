# backend/modules/incentives/services/tier_matcher.py

"""
Slab/tier matching.

``match`` is on the hot path of every daily calculation and assumes the
tiers are already well formed; ``validate_tiers`` enforces that shape
when a rule is authored.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class Tier:
    """Metric interval ``[lower, upper)`` mapped to a reward; ``upper=None`` is open-ended."""

    lower: Decimal
    upper: Optional[Decimal]
    reward: Decimal
    index: int
    extra: Any = None

    def contains(self, value, closed_upper: bool = False) -> bool:
        if value < self.lower:
            return False
        if self.upper is None:
            return True
        return value <= self.upper if closed_upper else value < self.upper


def match(
    tiers: Sequence[Tier], value, closed_upper: bool = False
) -> Optional[Tier]:
    """Return the first tier containing ``value`` or ``None``."""
    for tier in tiers:
        if tier.contains(value, closed_upper):
            return tier
    return None


def validate_tiers(tiers: Iterable[Tier]) -> List[Tier]:
    """
    Check tiers are ascending, non-overlapping and only the last is open-ended.

    Adjacent tiers may share a boundary value. Raises ``ValueError``
    describing the first defect found.
    """
    ordered = list(tiers)
    if not ordered:
        raise ValueError("At least one tier is required")

    for position, tier in enumerate(ordered):
        if tier.lower < 0:
            raise ValueError(f"Tier {position} has a negative lower bound")
        if tier.upper is not None and tier.upper <= tier.lower:
            raise ValueError(f"Tier {position} upper bound must exceed its lower bound")
        if tier.upper is None and position != len(ordered) - 1:
            raise ValueError(f"Only the last tier may be open-ended (tier {position})")
        if position > 0:
            previous = ordered[position - 1]
            if tier.lower < previous.upper:
                raise ValueError(
                    f"Tier {position} overlaps tier {position - 1} "
                    f"({tier.lower} < {previous.upper})"
                )
    return ordered
