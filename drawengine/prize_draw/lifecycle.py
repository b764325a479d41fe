"""Drawing instance lifecycle: draw, extend, cancel, and schedule successors.

A drawing is one atomic unit of work.  Its first statement is a
compare-and-set that moves the instance from ``active`` to ``drawing``; a
second caller racing on the same instance matches no row and fails with
:class:`~drawengine.errors.ConflictError` instead of drawing twice.  Any
failure after the claim rolls the whole transaction back, so the instance is
left ``active`` for the next sweep.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..collaborators import (
    ACTION_CANCELLED,
    ACTION_COMPLETED,
    ACTION_ERROR,
    ACTION_EXTENDED,
    AuditSink,
    DrawingSummary,
    LoggingAuditSink,
    LoggingRefundSink,
    RefundEvent,
    RefundItem,
    RefundSink,
    deliver,
)
from ..config import EngineSettings
from ..db.unit_of_work import UnitOfWork
from ..db.utils import as_utc
from ..errors import (
    ConfigurationError,
    ConflictError,
    DrawingTimeoutError,
    PersistenceError,
)
from ..models.audit import RefundRequest
from ..models.category import RecurrenceCategory
from ..models.entry import METHOD_PAYMENT, Entry
from ..models.instance import DrawingInstance, InstanceStatus
from ..models.user import User
from ..models.utils import generate_instance_code
from ..models.winner import Winner
from .schedule import next_draw_time
from .selector import ALGORITHM_NAME, WinnerSelector

logger = logging.getLogger(__name__)


@dataclass
class DrawingOutcome:
    """Committed result of :meth:`InstanceLifecycleManager.conduct_drawing`."""

    instance_id: int
    instance_code: str
    action: str
    status: str
    extension_count: int = 0
    scheduled_draw_time: Optional[datetime] = None
    audit_seed: Optional[str] = None
    structure: Optional[str] = None
    entry_count: int = 0
    ticket_count: int = 0
    winners: list[dict] = field(default_factory=list)
    unfilled_positions: list[int] = field(default_factory=list)
    refunds: list[RefundItem] = field(default_factory=list)
    reason: Optional[str] = None
    successor_id: Optional[int] = None
    category_id: Optional[int] = None
    category_enabled: bool = True

    @property
    def lifecycle_state(self) -> str:
        if self.action == ACTION_EXTENDED:
            return InstanceStatus.EXTENDED
        return self.status

    def to_summary(self, category_name: Optional[str] = None) -> DrawingSummary:
        return DrawingSummary(
            action=self.action,
            instance_id=self.instance_id,
            instance_code=self.instance_code,
            category=category_name,
            audit_seed=self.audit_seed,
            entry_count=self.entry_count,
            ticket_count=self.ticket_count,
            winner_count=len(self.winners),
            structure=self.structure,
            extension_count=self.extension_count,
            reason=self.reason,
        )


def create_instance(
    session: Session, category: RecurrenceCategory, now: datetime
) -> DrawingInstance:
    """Stage a fresh ``active`` instance of ``category`` at its next draw time."""

    draw_at = next_draw_time(category, now)
    instance = DrawingInstance(
        code=generate_instance_code(
            f"{category.internal_name}-{draw_at:%Y%m%d}", session=session
        ),
        category_id=category.id,
        scheduled_draw_time=draw_at,
    )
    session.add(instance)
    session.flush()
    logger.info(
        f"Created instance {instance.code} for category '{category.internal_name}' "
        f"drawing at {draw_at.isoformat()}"
    )
    return instance


class InstanceLifecycleManager:
    """Conduct drawings and keep one open instance per enabled category.

    Parameters
    ----------
    uow : UnitOfWork
        Transaction runner shared with entry intake.
    settings : EngineSettings, optional
        Network fee and other knobs. Defaults to :class:`EngineSettings`.
    selector : WinnerSelector, optional
        Winner selection strategy.
    refund_sink : RefundSink, optional
        Receives refund events after a cancellation commits.
    audit_sink : AuditSink, optional
        Receives a summary after every drawing attempt.
    clock : callable, optional
        Returns the current UTC time.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        *,
        settings: Optional[EngineSettings] = None,
        selector: Optional[WinnerSelector] = None,
        refund_sink: Optional[RefundSink] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.uow = uow
        self.settings = settings or EngineSettings()
        self.selector = selector or WinnerSelector(network_fee=self.settings.network_fee)
        self.refund_sink = refund_sink or LoggingRefundSink()
        self.audit_sink = audit_sink or LoggingAuditSink()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # drawing
    # ------------------------------------------------------------------
    def conduct_drawing(
        self,
        instance_id: int,
        *,
        now: Optional[datetime] = None,
        deadline: Optional[float] = None,
    ) -> DrawingOutcome:
        """Draw, extend or cancel ``instance_id`` in one transaction.

        Parameters
        ----------
        instance_id : int
            Instance to draw. It must be ``active``.
        now : datetime, optional
            Reference time for extensions and successor scheduling.
        deadline : float, optional
            :func:`time.monotonic` value after which the transaction is
            abandoned instead of committed.

        Returns
        -------
        DrawingOutcome
            The committed outcome: completed, extended or cancelled.

        Raises
        ------
        ConflictError
            If the instance is missing, not ``active``, or lost a race.
        ConfigurationError
            If the instance's category is missing.
        DrawingTimeoutError
            If ``deadline`` passed before commit.
        PersistenceError
            If the store failed; the instance stays ``active``.
        """

        now = as_utc(now) if now is not None else self._clock()

        def work(session: Session) -> DrawingOutcome:
            self._claim(session, instance_id, now)
            instance = UnitOfWork.read(session, DrawingInstance, instance_id)
            category = session.get(RecurrenceCategory, instance.category_id)
            if category is None:
                raise ConfigurationError(
                    f"Category {instance.category_id} of instance {instance.code} is missing"
                )
            if instance.participant_ticket_count < category.min_participants:
                outcome = self._handle_insufficient(session, instance, category, now)
            else:
                outcome = self._complete(session, instance, category, now)
            session.flush()
            self._check_deadline(deadline, instance_id)
            return outcome

        try:
            outcome = self.uow.commit_with_retry(work, label=f"drawing {instance_id}")
        except ConflictError:
            logger.info(f"Instance {instance_id} was not drawn: not active or lost a race")
            raise
        except ConfigurationError as exc:
            logger.error(f"Instance {instance_id} cannot be drawn: {exc}")
            raise
        except DrawingTimeoutError as exc:
            logger.error(str(exc))
            self._report_failure(instance_id, str(exc))
            raise
        except SQLAlchemyError as exc:
            logger.exception(f"Drawing of instance {instance_id} failed to persist")
            self._report_failure(instance_id, f"{exc.__class__.__name__}: {exc}")
            raise PersistenceError(
                f"Drawing of instance {instance_id} failed and was rolled back",
                instance_id=instance_id,
            ) from exc

        self._after_commit(outcome, now)
        return outcome

    def _claim(self, session: Session, instance_id: int, now: datetime) -> None:
        result = session.execute(
            update(DrawingInstance)
            .where(
                DrawingInstance.id == instance_id,
                DrawingInstance.status == InstanceStatus.ACTIVE,
            )
            .values(
                status=InstanceStatus.DRAWING,
                version=DrawingInstance.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            status = session.scalar(
                select(DrawingInstance.status).where(DrawingInstance.id == instance_id)
            )
            if status is None:
                raise ConflictError(
                    f"Instance {instance_id} does not exist", instance_id=instance_id
                )
            raise ConflictError(
                f"Instance {instance_id} is '{status}', expected 'active'",
                instance_id=instance_id,
            )

    @staticmethod
    def _check_deadline(deadline: Optional[float], instance_id: int) -> None:
        if deadline is not None and time.monotonic() > deadline:
            raise DrawingTimeoutError(
                f"Drawing of instance {instance_id} exceeded its time budget",
                instance_id=instance_id,
            )

    def _complete(
        self,
        session: Session,
        instance: DrawingInstance,
        category: RecurrenceCategory,
        now: datetime,
    ) -> DrawingOutcome:
        entries = Entry.confirmed_for_instance(session, instance.id)
        existing = Winner.for_instance(session, instance.id)

        if existing:
            # winners persisted by an earlier commit are kept, never redrawn
            logger.warning(
                f"Instance {instance.code} already has {len(existing)} winners; "
                "completing without a new selection"
            )
            summary = dict(instance.drawing_summary or {})
            audit_seed = summary.get("audit_seed")
            structure = summary.get("structure")
            unfilled: list[int] = []
            winners = existing
        else:
            result = self.selector.select(entries, instance, category=category, now=now)
            audit_seed = result.audit_seed
            structure = result.structure
            unfilled = list(result.unfilled_positions)
            winners = []
            for selected in result.winners:
                winner = Winner(
                    instance_id=instance.id,
                    position=selected.position,
                    user_id=selected.user_id,
                    entry_id=selected.entry_id,
                    percentage=selected.percentage,
                    gross_amount=selected.gross_amount,
                    net_amount=selected.net_amount,
                    ticket_index=selected.ticket_index,
                    selection_index=selected.selection_index,
                    created_at=now,
                )
                UnitOfWork.write(session, winner)
                user = session.get(User, selected.user_id)
                user.record_win(selected.gross_amount, now)
                winners.append(winner)

        instance.status = InstanceStatus.COMPLETED
        instance.actual_draw_time = now
        instance.drawing_summary = {
            "entry_count": len(entries),
            "ticket_count": instance.participant_ticket_count,
            "winner_count": len(winners),
            "audit_seed": audit_seed,
            "structure": structure,
            "algorithm": ALGORITHM_NAME,
            "unfilled_positions": unfilled,
            "drawn_at": now.isoformat(),
        }
        logger.info(
            f"Instance {instance.code} completed with {len(winners)} winners "
            f"from {instance.participant_ticket_count} tickets"
        )
        return DrawingOutcome(
            instance_id=instance.id,
            instance_code=instance.code,
            action=ACTION_COMPLETED,
            status=InstanceStatus.COMPLETED,
            extension_count=instance.extension_count,
            scheduled_draw_time=instance.scheduled_draw_time_utc,
            audit_seed=audit_seed,
            structure=structure,
            entry_count=len(entries),
            ticket_count=instance.participant_ticket_count,
            winners=[
                {
                    "position": w.position,
                    "user_id": w.user_id,
                    "entry_id": w.entry_id,
                    "percentage": w.percentage,
                    "gross_amount": w.gross_amount,
                    "net_amount": w.net_amount,
                }
                for w in winners
            ],
            unfilled_positions=unfilled,
            category_id=category.id,
            category_enabled=category.enabled,
        )

    def _handle_insufficient(
        self,
        session: Session,
        instance: DrawingInstance,
        category: RecurrenceCategory,
        now: datetime,
    ) -> DrawingOutcome:
        tickets = instance.participant_ticket_count
        if instance.extension_count < category.max_extensions:
            base = max(instance.scheduled_draw_time_utc, now)
            instance.status = InstanceStatus.ACTIVE
            instance.extension_count = instance.extension_count + 1
            instance.scheduled_draw_time = base + category.extension_window
            instance.last_extended_at = now
            reason = (
                f"{tickets} tickets below minimum of {category.min_participants}; "
                f"extension {instance.extension_count}/{category.max_extensions}"
            )
            logger.info(
                f"Instance {instance.code} extended to "
                f"{instance.scheduled_draw_time.isoformat()}: {reason}"
            )
            return DrawingOutcome(
                instance_id=instance.id,
                instance_code=instance.code,
                action=ACTION_EXTENDED,
                status=InstanceStatus.ACTIVE,
                extension_count=instance.extension_count,
                scheduled_draw_time=as_utc(instance.scheduled_draw_time),
                ticket_count=tickets,
                reason=reason,
                category_id=category.id,
                category_enabled=category.enabled,
            )

        reason = (
            f"Insufficient participants after {instance.extension_count} extensions "
            f"({tickets} tickets, minimum {category.min_participants})"
        )
        instance.status = InstanceStatus.CANCELLED
        instance.cancelled_at = now
        instance.cancellation_reason = reason

        refunds: list[RefundItem] = []
        entries = Entry.confirmed_for_instance(session, instance.id)
        if not category.is_action_based:
            for entry in entries:
                if entry.method != METHOD_PAYMENT:
                    continue
                amount = round((category.entry_cost or 0.0) * entry.ticket_count, 6)
                UnitOfWork.write(
                    session,
                    RefundRequest(
                        instance_id=instance.id,
                        entry_id=entry.id,
                        user_id=entry.user_id,
                        amount=amount,
                        payment_ref=entry.payment_ref,
                        reason=reason,
                    ),
                )
                refunds.append(
                    RefundItem(
                        entry_id=entry.id,
                        user_id=entry.user_id,
                        amount=amount,
                        payment_ref=entry.payment_ref,
                    )
                )
        logger.info(
            f"Instance {instance.code} cancelled: {reason}; "
            f"{len(refunds)} refund requests queued"
        )
        return DrawingOutcome(
            instance_id=instance.id,
            instance_code=instance.code,
            action=ACTION_CANCELLED,
            status=InstanceStatus.CANCELLED,
            extension_count=instance.extension_count,
            scheduled_draw_time=instance.scheduled_draw_time_utc,
            entry_count=len(entries),
            ticket_count=tickets,
            refunds=refunds,
            reason=reason,
            category_id=category.id,
            category_enabled=category.enabled,
        )

    # ------------------------------------------------------------------
    # after commit
    # ------------------------------------------------------------------
    def _after_commit(self, outcome: DrawingOutcome, now: datetime) -> None:
        if outcome.action == ACTION_CANCELLED and outcome.refunds:
            event = RefundEvent(
                instance_id=outcome.instance_id,
                instance_code=outcome.instance_code,
                reason=outcome.reason or "cancelled",
                items=tuple(outcome.refunds),
            )
            deliver(self.refund_sink.emit, event, what="refund sink")

        if outcome.action in (ACTION_COMPLETED, ACTION_CANCELLED):
            if outcome.category_enabled:
                try:
                    successor = self.schedule_successor(outcome.category_id, now=now)
                except ConfigurationError as exc:
                    logger.error(
                        f"No successor for instance {outcome.instance_code}: {exc}"
                    )
                except ConflictError as exc:
                    logger.warning(
                        f"Successor of instance {outcome.instance_code} not created: {exc}"
                    )
                except Exception:
                    logger.exception(
                        f"Scheduling the successor of instance {outcome.instance_code} failed"
                    )
                else:
                    outcome.successor_id = successor.id if successor else None
            else:
                logger.info(
                    f"Category {outcome.category_id} is disabled; "
                    f"no successor for instance {outcome.instance_code}"
                )

        deliver(self.audit_sink.record, outcome.to_summary(), what="audit sink")

    def _report_failure(self, instance_id: int, reason: str) -> None:
        summary = DrawingSummary(
            action=ACTION_ERROR, instance_id=instance_id, reason=reason
        )
        deliver(self.audit_sink.record, summary, what="audit sink")

    # ------------------------------------------------------------------
    # successors
    # ------------------------------------------------------------------
    def schedule_successor(
        self, category_id: int, *, now: Optional[datetime] = None
    ) -> Optional[DrawingInstance]:
        """Ensure ``category_id`` has an open instance, creating one if needed.

        Returns the open instance, or ``None`` when the category is disabled.
        An instance opened meanwhile by entry intake is reused.
        """

        now = as_utc(now) if now is not None else self._clock()

        def work(session: Session) -> Optional[DrawingInstance]:
            category = session.get(RecurrenceCategory, category_id)
            if category is None:
                raise ConfigurationError(f"Category {category_id} does not exist")
            if not category.enabled:
                return None
            current = DrawingInstance.current_for_category(session, category_id)
            if current is not None:
                return current
            return create_instance(session, category, now)

        return self.uow.commit_with_retry(work, label=f"successor of category {category_id}")

    def ensure_open_instances(self, *, now: Optional[datetime] = None) -> list[DrawingInstance]:
        """Open an instance for every enabled category that has none."""

        with self.uow.session_factory() as session:
            category_ids = list(
                session.scalars(
                    select(RecurrenceCategory.id).where(RecurrenceCategory.enabled.is_(True))
                )
            )
        opened = []
        for category_id in category_ids:
            try:
                instance = self.schedule_successor(category_id, now=now)
            except ConfigurationError as exc:
                logger.error(f"Category {category_id} has no open instance: {exc}")
                continue
            if instance is not None:
                opened.append(instance)
        return opened


__all__ = ["DrawingOutcome", "InstanceLifecycleManager", "create_instance"]
