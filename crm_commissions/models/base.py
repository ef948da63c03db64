"""
Declarative base, timestamp mixin and shared column types.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Currency amounts in major units with paisa precision
Money = Numeric(14, 2)

# Percentages such as 2.5 or 18.0000
Rate = Numeric(7, 4)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class TimestampMixin:
    """created_at is set by the database; updated_at on every UPDATE."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
