from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class PeriodKind(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class BudgetDataDocument(Base, TimestampMixin):
    """One stored budgeting document per user and calendar month.

    ``month_year`` is the storage key (``YYYY-MM``, 1-indexed month). The three
    list columns hold the camelCase JSON text of incomes, budget categories and
    payments exactly as they were last saved.
    """

    __tablename__ = "budget_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    month_year: Mapped[str] = mapped_column(String(7), nullable=False)
    incomes: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    budget_categories: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    payments: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    __table_args__ = (
        UniqueConstraint("user_id", "month_year", name="uq_budget_data_user_month"),
        Index("ix_budget_data_user", "user_id"),
    )
