"""Winner selection over a shuffled ticket pool.

Every confirmed entry contributes one slot per ticket.  The pool is shuffled
with a Fisher-Yates pass driven by a secure index source, then each prize
position draws slots until it finds a user who has not won yet.  A user wins at
most once per drawing; positions that cannot be filled are reported rather
than treated as a failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from ..models.entry import ENTRY_CONFIRMED
from .distribution import (
    DEFAULT_NETWORK_FEE,
    DEFAULT_STRUCTURE_REGISTRY,
    StructureRegistry,
    payout_for,
)
from .randomness import IndexSource, generate_audit_seed, secure_index, secure_shuffle

logger = logging.getLogger(__name__)

ALGORITHM_NAME = "cryptographic_shuffle"


@dataclass(frozen=True)
class TicketSlot:
    """One ticket of one entry in the expanded pool."""

    user_id: int
    entry_id: int
    ticket_index: int


@dataclass(frozen=True)
class SelectedWinner:
    """A filled prize position."""

    position: int
    user_id: int
    entry_id: int
    ticket_index: int
    selection_index: int
    percentage: float
    gross_amount: float
    net_amount: float


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of :meth:`WinnerSelector.select`."""

    audit_seed: str
    structure: str
    total_tickets: int
    unique_participants: int
    winners: tuple[SelectedWinner, ...] = field(default_factory=tuple)
    unfilled_positions: tuple[int, ...] = field(default_factory=tuple)
    algorithm: str = ALGORITHM_NAME
    selected_at: Optional[datetime] = None

    @property
    def winner_user_ids(self) -> list[int]:
        return [w.user_id for w in self.winners]


class WinnerSelector:
    """Pick winners for a drawing instance.

    Parameters
    ----------
    registry : StructureRegistry, optional
        Prize structures to choose from. Defaults to the built-in table.
    network_fee : float, default: 0.01
        Fixed fee subtracted from each gross payout.
    index_source : callable, optional
        ``(upper, context) -> int`` returning an index below ``upper``.
        Defaults to :func:`secure_index`; tests inject a deterministic source.
    seed_factory : callable, optional
        Returns the audit seed of a drawing.
    """

    def __init__(
        self,
        *,
        registry: Optional[StructureRegistry] = None,
        network_fee: float = DEFAULT_NETWORK_FEE,
        index_source: Optional[IndexSource] = None,
        seed_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.registry = registry or DEFAULT_STRUCTURE_REGISTRY
        self.network_fee = network_fee
        self._index_source = index_source or secure_index
        self._seed_factory = seed_factory or generate_audit_seed

    @staticmethod
    def expand_pool(entries: Iterable[Any]) -> list[TicketSlot]:
        """Return one :class:`TicketSlot` per ticket of every confirmed entry."""

        pool: list[TicketSlot] = []
        for entry in entries:
            if getattr(entry, "status", ENTRY_CONFIRMED) != ENTRY_CONFIRMED:
                continue
            for ticket_index in range(entry.ticket_count):
                pool.append(TicketSlot(entry.user_id, entry.id, ticket_index))
        return pool

    def select(
        self,
        entries: Iterable[Any],
        instance: Any,
        *,
        category: Any = None,
        now: Optional[datetime] = None,
    ) -> SelectionResult:
        """Select winners among ``entries`` for ``instance``.

        Parameters
        ----------
        entries : iterable
            Entries of the instance; only confirmed ones take part. The
            iterable is read once and never modified.
        instance : DrawingInstance
            Supplies the prize pool and the participant ticket count used to
            pick the prize tier.
        category : RecurrenceCategory or CategoryConfig, optional
            Supplies the entry kind and event structure. Defaults to
            ``instance.category``.

        Returns
        -------
        SelectionResult
            The winners in ascending position order, the audit seed, and any
            positions left unfilled.
        """

        category = category if category is not None else instance.category
        seed = self._seed_factory()
        pool = self.expand_pool(entries)
        unique_participants = len({slot.user_id for slot in pool})

        structure = self.registry.tier_for(
            instance.participant_ticket_count,
            category.entry_kind,
            getattr(category, "event_structure", None),
        )
        logger.info(
            f"Selecting {structure.winner_count} winners for instance {instance.id} "
            f"from {len(pool)} tickets ({unique_participants} users), "
            f"structure '{structure.name}'"
        )

        secure_shuffle(pool, seed, self._index_source)

        winners: list[SelectedWinner] = []
        unfilled: list[int] = []
        chosen_users: set[int] = set()
        for position, percentage in structure.positions():
            picked = self._draw_position(pool, seed, position, chosen_users)
            if picked is None:
                logger.warning(
                    f"Instance {instance.id}: could not fill position {position} "
                    f"after {len(pool)} attempts"
                )
                unfilled.append(position)
                continue
            selection_index, slot = picked
            chosen_users.add(slot.user_id)
            gross, net = payout_for(
                instance.prize_pool, percentage, network_fee=self.network_fee
            )
            winners.append(
                SelectedWinner(
                    position=position,
                    user_id=slot.user_id,
                    entry_id=slot.entry_id,
                    ticket_index=slot.ticket_index,
                    selection_index=selection_index,
                    percentage=percentage,
                    gross_amount=gross,
                    net_amount=net,
                )
            )

        return SelectionResult(
            audit_seed=seed,
            structure=structure.name,
            total_tickets=len(pool),
            unique_participants=unique_participants,
            winners=tuple(winners),
            unfilled_positions=tuple(unfilled),
            selected_at=now or datetime.now(timezone.utc),
        )

    def _draw_position(
        self,
        pool: list[TicketSlot],
        seed: str,
        position: int,
        chosen_users: set[int],
    ) -> Optional[tuple[int, TicketSlot]]:
        # bounded by the pool size so a pool dominated by past winners terminates
        for attempt in range(len(pool)):
            index = self._index_source(len(pool), f"{seed}_{position}_{attempt}")
            slot = pool[index]
            if slot.user_id not in chosen_users:
                return index, slot
        return None


__all__ = [
    "ALGORITHM_NAME",
    "SelectedWinner",
    "SelectionResult",
    "TicketSlot",
    "WinnerSelector",
]
