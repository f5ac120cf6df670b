"""Shared declarative base for all SQLAlchemy ORM models."""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# stable constraint names so the same schema works on sqlite and postgres
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class imported by all model modules to register metadata."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
