from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from .cache import CategoryCache
from .collaborators import build_audit_sink
from .config import EngineSettings
from .db.engine import get_sessionmaker, make_engine
from .db.unit_of_work import UnitOfWork
from .db.utils import as_utc, dt_iso
from .defaults import seed_default_categories
from .errors import (
    ConfigurationError,
    ConflictError,
    EntryRejectedError,
    QuotaExceededError,
)
from .models.category import RecurrenceCategory
from .models.entry import (
    ENTRY_CONFIRMED,
    ENTRY_PENDING,
    METHOD_PAYMENT,
    METHOD_REWARDED_ACTION,
    Entry,
)
from .models.instance import DrawingInstance, InstanceStatus
from .models.user import User
from .models.winner import Winner
from .prize_draw.lifecycle import (
    DrawingOutcome,
    InstanceLifecycleManager,
    create_instance,
)
from .prize_draw.quota import TicketQuotaLedger
from .prize_draw.scheduler import SchedulerTrigger, SweepReport

logger = logging.getLogger(__name__)

__all__ = [
    "EntryReceipt",
    "build_scheduler",
    "cleanup_expired_quotas",
    "confirm_entry",
    "conduct_drawing",
    "recent_winners",
    "run_scheduled_sweep",
    "seed_default_categories",
    "submit_entry",
    "user_drawing_stats",
    "validate_entry_request",
]


@dataclass(frozen=True)
class EntryReceipt:
    """What entry intake reports back after an entry is recorded."""

    entry_id: int
    instance_id: int
    instance_code: str
    status: str
    ticket_count: int
    participant_ticket_count: int
    prize_pool: float
    tickets_used: int
    tickets_remaining: int


def validate_entry_request(
    category: Any,
    method: str,
    ticket_count: int,
    payment_ref: Optional[str] = None,
    action_ref: Optional[str] = None,
) -> None:
    """Reject a malformed entry request before any state is touched.

    Parameters
    ----------
    category : RecurrenceCategory or CategoryConfig
        Category the entry is for.
    method : str
        ``"payment"`` or ``"rewarded_action"``; must match the category kind.
    ticket_count : int
        Requested tickets, between 1 and ``max_tickets_per_user``.
    payment_ref, action_ref : str, optional
        Reference of the payment or of the completed action.

    Raises
    ------
    ConfigurationError
        If the category is disabled.
    EntryRejectedError
        If the request does not fit the category.
    """

    if not category.enabled:
        raise ConfigurationError(f"Category '{category.internal_name}' is disabled")
    if not isinstance(ticket_count, int) or ticket_count < 1:
        raise EntryRejectedError("ticket_count must be a positive integer")
    if ticket_count > category.max_tickets_per_user:
        raise EntryRejectedError(
            f"At most {category.max_tickets_per_user} tickets per entry in "
            f"'{category.internal_name}'"
        )
    if category.is_action_based:
        if method != METHOD_REWARDED_ACTION:
            raise EntryRejectedError(
                f"Category '{category.internal_name}' only accepts rewarded actions"
            )
        if not action_ref:
            raise EntryRejectedError("action_ref is required for rewarded-action entries")
    else:
        if method != METHOD_PAYMENT:
            raise EntryRejectedError(
                f"Category '{category.internal_name}' only accepts payments"
            )
        if not payment_ref:
            raise EntryRejectedError("payment_ref is required for payment entries")


def _apply_confirmed_entry(
    session: Session,
    ledger: TicketQuotaLedger,
    category: RecurrenceCategory,
    instance: DrawingInstance,
    user: User,
    entry: Entry,
    now: datetime,
) -> int:
    """Consume quota and bump every counter affected by a confirmed entry.

    Returns the tickets the user has now used in the current period.
    """

    record = ledger.commit(session, user.id, category, entry.ticket_count, at=now)
    instance.add_tickets(entry.ticket_count, category)
    user.record_entry(entry.ticket_count, now)
    entry.status = ENTRY_CONFIRMED
    entry.confirmed_at = now
    return record.tickets_used


def submit_entry(
    uow: UnitOfWork,
    *,
    user_id: int,
    category_id: int,
    method: str,
    ticket_count: int = 1,
    payment_ref: Optional[str] = None,
    action_ref: Optional[str] = None,
    pending: bool = False,
    ledger: Optional[TicketQuotaLedger] = None,
    cache: Optional[CategoryCache] = None,
    now: Optional[datetime] = None,
) -> EntryReceipt:
    """Record an entry for the category's open drawing instance.

    A confirmed entry consumes quota, increments the instance's participant
    ticket count and prize pool, and bumps the user's counters in one atomic
    unit of work.  A ``pending`` entry (payment not settled yet) is only
    recorded; :func:`confirm_entry` applies its effects later.

    When no instance is open for the category one is created at the
    category's next draw time.

    Parameters
    ----------
    uow : UnitOfWork
        Transaction runner.
    user_id : int
        Entering user.
    category_id : int
        Category to enter.
    method : str
        ``"payment"`` or ``"rewarded_action"``.
    ticket_count : int, default: 1
        Number of tickets.
    payment_ref, action_ref : str, optional
        Reference of the settling payment or completed action.
    pending : bool, default: False
        Record the entry without confirming it.
    ledger : TicketQuotaLedger, optional
        Quota ledger; a default one is used when omitted.
    cache : CategoryCache, optional
        When given, the request is validated against cached configuration
        before a transaction is opened.
    now : datetime, optional
        Time of the entry.

    Returns
    -------
    EntryReceipt
        The committed entry and the updated instance counters.

    Raises
    ------
    ConfigurationError
        If the category is missing or disabled.
    EntryRejectedError
        If the request is malformed or the user is unknown.
    QuotaExceededError
        If the user's ticket quota for the period is exhausted.
    """

    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    ledger = ledger or TicketQuotaLedger()
    if cache is not None:
        validate_entry_request(
            cache.get(category_id), method, ticket_count, payment_ref, action_ref
        )

    def work(session: Session) -> EntryReceipt:
        category = session.get(RecurrenceCategory, category_id)
        if category is None:
            raise ConfigurationError(f"Category {category_id} does not exist")
        validate_entry_request(category, method, ticket_count, payment_ref, action_ref)

        if not pending:
            check = ledger.reserve(session, user_id, category, ticket_count, at=now)
            if not check.allowed:
                raise QuotaExceededError(check.reason, used=check.used, limit=check.limit)

        user = session.get(User, user_id)
        if user is None:
            raise EntryRejectedError(f"User {user_id} does not exist")

        instance = DrawingInstance.current_for_category(session, category_id)
        if instance is None:
            instance = create_instance(session, category, now)

        entry = Entry(
            user_id=user_id,
            category_id=category_id,
            instance_id=instance.id,
            method=method,
            ticket_count=ticket_count,
            status=ENTRY_PENDING if pending else ENTRY_CONFIRMED,
            payment_ref=payment_ref,
            action_ref=action_ref,
            created_at=now,
        )
        UnitOfWork.write(session, entry)
        if pending:
            used = ledger.usage(session, user_id, category, at=now)
        else:
            used = _apply_confirmed_entry(
                session, ledger, category, instance, user, entry, now
            )
        session.flush()
        return EntryReceipt(
            entry_id=entry.id,
            instance_id=instance.id,
            instance_code=instance.code,
            status=entry.status,
            ticket_count=ticket_count,
            participant_ticket_count=instance.participant_ticket_count,
            prize_pool=instance.prize_pool,
            tickets_used=used,
            tickets_remaining=max(0, category.max_tickets_per_user - used),
        )

    receipt = uow.commit_with_retry(work, label=f"entry for category {category_id}")
    logger.info(
        f"User {user_id} entered {receipt.instance_code} with {ticket_count} tickets "
        f"({receipt.status})"
    )
    return receipt


def confirm_entry(
    uow: UnitOfWork,
    entry_id: int,
    *,
    ledger: Optional[TicketQuotaLedger] = None,
    now: Optional[datetime] = None,
) -> EntryReceipt:
    """Confirm a pending entry once its payment settled.

    Raises
    ------
    ConflictError
        If the entry is not pending or its instance no longer accepts entries.
    QuotaExceededError
        If confirming would exceed the user's quota.
    """

    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    ledger = ledger or TicketQuotaLedger()

    def work(session: Session) -> EntryReceipt:
        entry = UnitOfWork.read(session, Entry, entry_id)
        if entry is None:
            raise ConflictError(f"Entry {entry_id} does not exist")
        if entry.status != ENTRY_PENDING:
            raise ConflictError(f"Entry {entry_id} is '{entry.status}', expected 'pending'")
        instance = UnitOfWork.read(session, DrawingInstance, entry.instance_id)
        if instance.status != InstanceStatus.ACTIVE:
            raise ConflictError(
                f"Instance {instance.code} is '{instance.status}' and accepts no entries",
                instance_id=instance.id,
            )
        category = session.get(RecurrenceCategory, entry.category_id)
        user = session.get(User, entry.user_id)
        used = _apply_confirmed_entry(session, ledger, category, instance, user, entry, now)
        session.flush()
        return EntryReceipt(
            entry_id=entry.id,
            instance_id=instance.id,
            instance_code=instance.code,
            status=entry.status,
            ticket_count=entry.ticket_count,
            participant_ticket_count=instance.participant_ticket_count,
            prize_pool=instance.prize_pool,
            tickets_used=used,
            tickets_remaining=max(0, category.max_tickets_per_user - used),
        )

    return uow.commit_with_retry(work, label=f"confirm entry {entry_id}")


def conduct_drawing(
    manager: InstanceLifecycleManager,
    instance_id: int,
    *,
    now: Optional[datetime] = None,
) -> DrawingOutcome:
    """Draw ``instance_id`` outside of a scheduler sweep (e.g. an admin action)."""

    return manager.conduct_drawing(instance_id, now=now)


def build_scheduler(
    settings: Optional[EngineSettings] = None,
    *,
    session_factory: Optional["sessionmaker[Session]"] = None,
) -> SchedulerTrigger:
    """Wire a :class:`SchedulerTrigger` with its lifecycle manager and sinks."""

    settings = settings or EngineSettings.from_env()
    if session_factory is None:
        session_factory = get_sessionmaker(make_engine(settings.database_url))
    uow = UnitOfWork(session_factory, max_attempts=settings.conflict_retries)
    manager = InstanceLifecycleManager(
        uow,
        settings=settings,
        audit_sink=build_audit_sink(settings, uow),
    )
    return SchedulerTrigger(manager, budget_seconds=settings.sweep_budget_seconds)


def run_scheduled_sweep(
    trigger: SchedulerTrigger, *, now: Optional[datetime] = None
) -> SweepReport:
    """Open missing instances, then draw everything that is due."""

    if not trigger.paused:
        trigger.manager.ensure_open_instances(now=now)
    report = trigger.sweep(now)
    logger.info(
        f"Sweep finished: {report.due_count} due, {len(report.failed)} not drawn"
    )
    return report


def cleanup_expired_quotas(
    uow: UnitOfWork,
    *,
    retention_days: int = 90,
    now: Optional[datetime] = None,
    ledger: Optional[TicketQuotaLedger] = None,
) -> int:
    """Delete quota rows whose period ended more than ``retention_days`` ago."""

    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    ledger = ledger or TicketQuotaLedger()
    return uow.commit_with_retry(
        lambda session: ledger.cleanup_expired(session, cutoff),
        label="quota cleanup",
    )


def recent_winners(session: Session, limit: int = 20) -> list[dict]:
    """Return the latest winners with their instance and category names."""

    stmt = (
        select(Winner, DrawingInstance.code, RecurrenceCategory.internal_name)
        .join(DrawingInstance, Winner.instance_id == DrawingInstance.id)
        .join(RecurrenceCategory, DrawingInstance.category_id == RecurrenceCategory.id)
        .order_by(Winner.created_at.desc(), Winner.position.asc())
        .limit(limit)
    )
    rows = []
    for winner, code, category_name in session.execute(stmt):
        data = winner.to_json()
        data["instance_code"] = code
        data["category"] = category_name
        rows.append(data)
    return rows


def user_drawing_stats(session: Session, user_id: int) -> dict:
    """Summarize a user's participation and wins.

    Raises
    ------
    EntryRejectedError
        If the user does not exist.
    """

    user = session.get(User, user_id)
    if user is None:
        raise EntryRejectedError(f"User {user_id} does not exist")

    pending_entries = session.scalar(
        select(func.count(Entry.id)).where(
            Entry.user_id == user_id, Entry.status == ENTRY_PENDING
        )
    )
    latest_win = session.scalar(
        select(Winner)
        .where(Winner.user_id == user_id)
        .order_by(Winner.created_at.desc())
        .limit(1)
    )
    entered = user.lotteries_entered or 0
    return {
        "user_id": user.id,
        "lotteries_entered": entered,
        "total_tickets": user.total_tickets,
        "lotteries_won": user.lotteries_won,
        "total_winnings": round(user.total_winnings or 0.0, 6),
        "win_rate": (user.lotteries_won / entered) if entered else 0.0,
        "pending_entries": pending_entries or 0,
        "last_entry_at": dt_iso(user.last_entry_at),
        "last_win_at": dt_iso(user.last_win_at),
        "latest_win": latest_win.to_json() if latest_win is not None else None,
    }
