"""SQLAlchemy 2.x ORM models for persisted request state."""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class StateRecord(Base):
    """A pending signin/signout State, stored as its storage string.

    ``key`` includes the store prefix, so several DatabaseStateStore
    instances with different prefixes can share one table. Age comes from
    the ``created`` field inside ``value``.
    """

    __tablename__ = "oidc_states"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<StateRecord(key='{self.key}')>"
