from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from drawengine.db.metadata import metadata_obj

# BigInteger keys everywhere except SQLite, where only INTEGER autoincrements.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Declarative base bound to the naming-convention metadata."""

    metadata = metadata_obj
