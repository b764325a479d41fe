"""Outbound collaborators: refund requests and drawing audit summaries.

Both are invoked after the drawing transaction has committed.  A failing
collaborator is logged and never rolls back or re-runs a drawing.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, TypeVar

import requests

from .db.unit_of_work import UnitOfWork
from .models.audit import DrawingLog

logger = logging.getLogger(__name__)

ACTION_COMPLETED = "drawing_completed"
ACTION_EXTENDED = "drawing_extended"
ACTION_CANCELLED = "drawing_cancelled"
ACTION_ERROR = "drawing_error"


@dataclass(frozen=True)
class DrawingSummary:
    """What the audit sink learns about one drawing attempt."""

    action: str
    instance_id: int
    instance_code: Optional[str] = None
    category: Optional[str] = None
    audit_seed: Optional[str] = None
    entry_count: int = 0
    ticket_count: int = 0
    winner_count: int = 0
    structure: Optional[str] = None
    extension_count: int = 0
    reason: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


@dataclass(frozen=True)
class RefundItem:
    entry_id: int
    user_id: int
    amount: float
    payment_ref: Optional[str] = None


@dataclass(frozen=True)
class RefundEvent:
    """Paid entries of a cancelled instance that must be refunded."""

    instance_id: int
    instance_code: str
    reason: str
    items: tuple[RefundItem, ...] = ()

    @property
    def total_amount(self) -> float:
        return round(sum(item.amount for item in self.items), 6)


class RefundSink(Protocol):
    def emit(self, event: RefundEvent) -> None: ...


class AuditSink(Protocol):
    def record(self, summary: DrawingSummary) -> None: ...


class LoggingRefundSink:
    """Log refund events; the outbox rows remain the source of truth."""

    def emit(self, event: RefundEvent) -> None:
        logger.info(
            f"Refund requested for instance {event.instance_code}: "
            f"{len(event.items)} entries, {event.total_amount} total ({event.reason})"
        )


class LoggingAuditSink:
    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def record(self, summary: DrawingSummary) -> None:
        logger.log(
            self.level,
            f"{summary.action}: instance={summary.instance_id} "
            f"tickets={summary.ticket_count} winners={summary.winner_count} "
            f"seed={summary.audit_seed} reason={summary.reason}",
        )


class DatabaseAuditSink:
    """Persist summaries as :class:`DrawingLog` rows in their own transaction."""

    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow

    def record(self, summary: DrawingSummary) -> None:
        details = summary.to_json()

        def work(session):
            UnitOfWork.write(
                session,
                DrawingLog(
                    action=summary.action,
                    instance_id=summary.instance_id,
                    details=details,
                    occurred_at=summary.occurred_at,
                ),
            )

        self._uow.commit_with_retry(work, label=f"audit log {summary.instance_id}")


class WebhookAuditSink:
    """POST summaries as JSON to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook URL must not be empty")
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json", **(headers or {})}

    def record(self, summary: DrawingSummary) -> None:
        r = self.session.post(
            self.url, json=summary.to_json(), headers=self.headers, timeout=self.timeout
        )
        r.raise_for_status()


class CompositeAuditSink:
    """Fan a summary out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Iterable[AuditSink]) -> None:
        self.sinks = list(sinks)

    def record(self, summary: DrawingSummary) -> None:
        for sink in self.sinks:
            deliver(sink.record, summary, what=f"{type(sink).__name__}")


E = TypeVar("E")


def deliver(send: Callable[[E], None], payload: E, *, what: str) -> bool:
    """Call ``send(payload)`` and log instead of raising on failure.

    Returns ``True`` when delivery succeeded.
    """

    try:
        send(payload)
    except Exception:
        logger.exception(f"Delivery to {what} failed")
        return False
    return True


def build_audit_sink(settings: Any, uow: Optional[UnitOfWork] = None) -> AuditSink:
    """Assemble the audit sinks enabled by ``settings``."""

    sinks: list[AuditSink] = [LoggingAuditSink()]
    if uow is not None:
        sinks.append(DatabaseAuditSink(uow))
    if getattr(settings, "audit_webhook_url", None):
        sinks.append(
            WebhookAuditSink(
                settings.audit_webhook_url, timeout=settings.audit_webhook_timeout
            )
        )
    if len(sinks) == 1:
        return sinks[0]
    return CompositeAuditSink(sinks)


__all__ = [
    "ACTION_CANCELLED",
    "ACTION_COMPLETED",
    "ACTION_ERROR",
    "ACTION_EXTENDED",
    "AuditSink",
    "CompositeAuditSink",
    "DatabaseAuditSink",
    "DrawingSummary",
    "LoggingAuditSink",
    "LoggingRefundSink",
    "RefundEvent",
    "RefundItem",
    "RefundSink",
    "WebhookAuditSink",
    "build_audit_sink",
    "deliver",
]
