"""Utilities for the prize draw subsystem."""

from .distribution import (
    DEFAULT_STRUCTURE_REGISTRY,
    PrizeStructure,
    StructureRegistry,
    calculate_prize_amounts,
    distribution_report,
    payout_for,
    structure_for,
    validate_structure,
)
from .lifecycle import DrawingOutcome, InstanceLifecycleManager
from .quota import QuotaCheck, TicketQuotaLedger, limiting_period
from .randomness import generate_audit_seed, secure_index
from .schedule import next_draw_time, validate_cadence
from .scheduler import SchedulerTrigger, SweepReport
from .selector import SelectionResult, WinnerSelector

__all__ = [
    "DEFAULT_STRUCTURE_REGISTRY",
    "DrawingOutcome",
    "InstanceLifecycleManager",
    "PrizeStructure",
    "QuotaCheck",
    "SchedulerTrigger",
    "SelectionResult",
    "StructureRegistry",
    "SweepReport",
    "TicketQuotaLedger",
    "WinnerSelector",
    "calculate_prize_amounts",
    "distribution_report",
    "generate_audit_seed",
    "limiting_period",
    "next_draw_time",
    "payout_for",
    "secure_index",
    "structure_for",
    "validate_cadence",
    "validate_structure",
]
