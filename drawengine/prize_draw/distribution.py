"""Prize structures and payout arithmetic.

A prize structure is an ordered list of pool percentages, one per prize
position.  The structure applied to a drawing is chosen from the participant
ticket count (``small``/``medium``/``large`` tiers) unless the category is
action-based (always ``micro``) or names a special event structure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence

from ..models.category import ENTRY_KIND_ACTION

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_FEE = 0.01
"""Fixed transfer fee deducted from every gross payout."""

STRUCTURE_TOLERANCE = 1e-4
"""Maximum deviation of a structure's percentage total from 1.0."""

AMOUNT_DECIMALS = 6


@dataclass(frozen=True)
class PrizeStructure:
    """Ordered pool percentages for prize positions 1..N.

    Attributes
    ----------
    name : str
        Registry key, e.g. ``"medium"``.
    percentages : tuple[float, ...]
        Share of the pool per position; index 0 is position 1.
    max_participants : Optional[int]
        Upper bound of the participant range served by this tier, ``None``
        when unbounded.
    description : Optional[str]
        Human-readable summary.
    """

    name: str
    percentages: tuple[float, ...]
    max_participants: Optional[int] = None
    description: Optional[str] = None

    @property
    def winner_count(self) -> int:
        return len(self.percentages)

    def positions(self) -> list[tuple[int, float]]:
        """Return ``(position, percentage)`` pairs in ascending position order."""
        return [(idx + 1, pct) for idx, pct in enumerate(self.percentages)]

    def percentage_for(self, position: int) -> float:
        """Return the percentage of ``position``, or ``0.0`` when it is not paid."""
        if 1 <= position <= len(self.percentages):
            return self.percentages[position - 1]
        return 0.0


@dataclass(frozen=True)
class StructureValidation:
    """Result of :func:`validate_structure`."""

    is_valid: bool
    total: float
    position_count: int
    difference: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class Payout:
    """Payout of one prize position."""

    position: int
    percentage: float
    gross_amount: float
    net_amount: float


@dataclass(frozen=True)
class PrizeBreakdown:
    """All payouts of a structure applied to a pool."""

    structure: str
    prize_pool: float
    participant_count: int
    payouts: tuple[Payout, ...] = field(default_factory=tuple)

    @property
    def total_distributed(self) -> float:
        return round(sum(p.gross_amount for p in self.payouts), AMOUNT_DECIMALS)

    @property
    def winner_count(self) -> int:
        return len(self.payouts)


def validate_structure(
    percentages: Iterable[float], *, tolerance: float = STRUCTURE_TOLERANCE
) -> StructureValidation:
    """Check that ``percentages`` are non-negative and sum to 1.0 within ``tolerance``."""

    values = list(percentages)
    total = float(sum(values))
    difference = total - 1.0
    if not values:
        return StructureValidation(False, total, 0, difference, "structure has no positions")
    if any(v < 0 for v in values):
        return StructureValidation(
            False, total, len(values), difference, "percentages must not be negative"
        )
    if abs(difference) > tolerance:
        return StructureValidation(
            False,
            total,
            len(values),
            difference,
            f"Prize structure totals {total}, not 1.0",
        )
    return StructureValidation(True, total, len(values), difference)


def payout_for(
    prize_pool: float,
    percentage: float,
    *,
    network_fee: float = DEFAULT_NETWORK_FEE,
) -> tuple[float, float]:
    """Return ``(gross, net)`` for ``percentage`` of ``prize_pool``.

    ``gross`` is rounded to six decimals; ``net`` is ``gross`` minus the fixed
    network fee, floored at zero.
    """

    gross = round(prize_pool * percentage, AMOUNT_DECIMALS)
    net = max(0.0, round(gross - network_fee, AMOUNT_DECIMALS))
    return gross, net


class StructureRegistry:
    """Mutable registry mapping structure names to prize structures."""

    TIER_ORDER = ("small", "medium", "large")
    ACTION_TIER = "micro"

    def __init__(self) -> None:
        self._structures: Dict[str, PrizeStructure] = {}

    def register(
        self,
        structure: PrizeStructure,
        *,
        replace: bool = False,
        validate: bool = True,
    ) -> None:
        """Register ``structure`` under its name after validating its percentages.

        Parameters
        ----------
        structure : PrizeStructure
            Structure to add to the registry.
        replace : bool, default: False
            When ``True`` an existing registration with the same name is
            overwritten. Otherwise a duplicate raises :class:`ValueError`.
        validate : bool, default: True
            When ``False`` a structure whose percentages do not total 1.0 is
            registered anyway and the deviation is logged as a warning.
        """
        validation = validate_structure(structure.percentages)
        if not validation.is_valid:
            if validate:
                raise ValueError(
                    f"Invalid prize structure '{structure.name}': {validation.reason}"
                )
            logger.warning(
                f"Prize structure '{structure.name}' registered unvalidated: "
                f"{validation.reason}"
            )
        if not replace and structure.name in self._structures:
            raise ValueError(f"Prize structure '{structure.name}' is already registered")
        self._structures[structure.name] = structure

    def get(self, name: str) -> PrizeStructure:
        """Return the structure registered under ``name``."""
        try:
            return self._structures[name]
        except KeyError as exc:
            raise KeyError(f"Unknown prize structure '{name}'") from exc

    def available_structures(self) -> Dict[str, PrizeStructure]:
        """Return a copy of the registered structures keyed by name."""
        return dict(self._structures)

    def tier_for(
        self,
        participant_count: int,
        category_kind: Optional[str] = None,
        event: Optional[str] = None,
    ) -> PrizeStructure:
        """Pick the structure for a drawing.

        An explicit ``event`` structure wins, then the action-based ``micro``
        tier, then the participant-count tiers in ascending order.
        """
        if participant_count < 0:
            raise ValueError("participant_count must not be negative")
        if event:
            return self.get(event)
        if category_kind == ENTRY_KIND_ACTION:
            return self.get(self.ACTION_TIER)
        for name in self.TIER_ORDER:
            tier = self.get(name)
            if tier.max_participants is None or participant_count <= tier.max_participants:
                return tier
        # The last tier is unbounded in the default table; fall back to it regardless.
        return self.get(self.TIER_ORDER[-1])


def _default_registry() -> StructureRegistry:
    registry = StructureRegistry()
    registry.register(
        PrizeStructure(
            name="micro",
            percentages=(0.5, 0.3, 0.2),
            description="Action-based drawings, any participant count.",
        )
    )
    registry.register(
        PrizeStructure(
            name="small",
            percentages=(0.6, 0.25, 0.15),
            max_participants=50,
            description="Up to 50 participant tickets.",
        )
    )
    registry.register(
        PrizeStructure(
            name="medium",
            percentages=(0.5, 0.25, 0.15, 0.06, 0.04),
            max_participants=200,
            description="51 to 200 participant tickets.",
        )
    )
    registry.register(
        PrizeStructure(
            name="large",
            # positions total 1.08 of the pool
            percentages=(0.4, 0.2, 0.15, 0.08, 0.08, 0.08, 0.0225, 0.0225, 0.0225, 0.0225),
            description="More than 200 participant tickets.",
        ),
        validate=False,
    )
    registry.register(
        PrizeStructure(
            name="holiday",
            percentages=(0.3, 0.15, 0.12, 0.1, 0.08, 0.07, 0.06, 0.05, 0.04, 0.03),
            description="Holiday events paying ten positions.",
        )
    )
    registry.register(
        PrizeStructure(
            name="bonus",
            percentages=(0.7, 0.2, 0.1),
            description="Top-heavy bonus rounds.",
        )
    )
    return registry


DEFAULT_STRUCTURE_REGISTRY = _default_registry()


def structure_for(
    participant_count: int,
    category_kind: Optional[str] = None,
    *,
    event: Optional[str] = None,
    registry: Optional[StructureRegistry] = None,
) -> list[tuple[int, float]]:
    """Return the ordered ``(position, percentage)`` list for a drawing."""

    active_registry = registry or DEFAULT_STRUCTURE_REGISTRY
    return active_registry.tier_for(participant_count, category_kind, event).positions()


def calculate_prize_amounts(
    prize_pool: float,
    participant_count: int,
    category_kind: Optional[str] = None,
    *,
    event: Optional[str] = None,
    network_fee: float = DEFAULT_NETWORK_FEE,
    registry: Optional[StructureRegistry] = None,
) -> PrizeBreakdown:
    """Apply the selected structure to ``prize_pool`` and return every payout."""

    active_registry = registry or DEFAULT_STRUCTURE_REGISTRY
    structure = active_registry.tier_for(participant_count, category_kind, event)
    payouts = []
    for position, percentage in structure.positions():
        gross, net = payout_for(prize_pool, percentage, network_fee=network_fee)
        payouts.append(Payout(position, percentage, gross, net))
    return PrizeBreakdown(
        structure=structure.name,
        prize_pool=prize_pool,
        participant_count=participant_count,
        payouts=tuple(payouts),
    )


def distribution_report(
    instance_code: str,
    participant_count: int,
    prize_pool: float,
    category_kind: Optional[str] = None,
    *,
    event: Optional[str] = None,
    network_fee: float = DEFAULT_NETWORK_FEE,
    registry: Optional[StructureRegistry] = None,
) -> dict:
    """Summarize how ``prize_pool`` would be split for an instance."""

    breakdown = calculate_prize_amounts(
        prize_pool,
        participant_count,
        category_kind,
        event=event,
        network_fee=network_fee,
        registry=registry,
    )
    grosses: Sequence[float] = [p.gross_amount for p in breakdown.payouts]
    first = grosses[0] if grosses else 0.0
    return {
        "instance": instance_code,
        "summary": {
            "participant_count": participant_count,
            "prize_pool": prize_pool,
            "category_kind": category_kind,
            "structure": breakdown.structure,
            "winner_count": breakdown.winner_count,
            "total_distributed": breakdown.total_distributed,
            "distribution_efficiency": (
                breakdown.total_distributed / prize_pool * 100 if prize_pool else 0.0
            ),
        },
        "prizes": [
            {
                "position": p.position,
                "percentage": p.percentage,
                "gross_amount": p.gross_amount,
                "net_amount": p.net_amount,
            }
            for p in breakdown.payouts
        ],
        "breakdown": {
            "first_prize": first,
            "smallest_prize": min(grosses) if grosses else 0.0,
            "largest_prize": max(grosses) if grosses else 0.0,
            "average_prize": (
                breakdown.total_distributed / len(grosses) if grosses else 0.0
            ),
        },
    }


__all__ = [
    "AMOUNT_DECIMALS",
    "DEFAULT_NETWORK_FEE",
    "DEFAULT_STRUCTURE_REGISTRY",
    "Payout",
    "PrizeBreakdown",
    "PrizeStructure",
    "STRUCTURE_TOLERANCE",
    "StructureRegistry",
    "StructureValidation",
    "calculate_prize_amounts",
    "distribution_report",
    "payout_for",
    "structure_for",
    "validate_structure",
]
