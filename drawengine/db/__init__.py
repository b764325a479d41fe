from .engine import get_sessionmaker, make_engine
from .unit_of_work import UnitOfWork

__all__ = ["UnitOfWork", "get_sessionmaker", "make_engine"]
