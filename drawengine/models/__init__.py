from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .user import User  # noqa: F401
from .category import CategoryConfig, RecurrenceCategory  # noqa: F401
from .instance import DrawingInstance, InstanceStatus  # noqa: F401
from .entry import Entry  # noqa: F401
from .winner import Winner, WinnerStatus  # noqa: F401
from .quota import TicketQuotaRecord  # noqa: F401
from .audit import DrawingLog, RefundRequest  # noqa: F401

__all__ = [
    "Base",
    "User",
    "CategoryConfig",
    "RecurrenceCategory",
    "DrawingInstance",
    "InstanceStatus",
    "Entry",
    "Winner",
    "WinnerStatus",
    "TicketQuotaRecord",
    "DrawingLog",
    "RefundRequest",
]
