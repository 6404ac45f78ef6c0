from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Callable, Iterable, Iterator, Optional, Sequence

from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from advisor import AdvisorClient
from models import BudgetDataDocument, PeriodKind
from periods import MonthKey, parse_month_key, period_label
from schemas import (
    AvailablePeriods,
    BudgetCategory,
    BudgetSnapshot,
    CategoryProgress,
    DashboardSummary,
    IncomeSource,
    MonthlyRecord,
    NewCategoryIn,
    NewIncomeIn,
    NewPaymentIn,
    OptimizationsOut,
    OverspendingOut,
    Payment,
    ReportCategorySummary,
    ReportPeriodSummary,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")
# a finite float has at most 309 integer digits; sums and cents need headroom
MONEY_PRECISION = 400


class StoreUnavailable(RuntimeError):
    pass


class RecordNotFound(ValueError):
    pass


class MalformedRecord(ValueError):
    pass


def require_user_id(user_id: Optional[str]) -> str:
    clean = (user_id or "").strip()
    if not clean:
        raise ValueError("User ID is required")
    return clean


def to_decimal(amount: float) -> Decimal:
    # str() gives the shortest repr, so 85.5 becomes Decimal("85.5") and not
    # the binary expansion of the float.
    return Decimal(str(amount))


@contextmanager
def money_context() -> Iterator[None]:
    with localcontext() as ctx:
        ctx.prec = MONEY_PRECISION
        # inf - inf yields NaN instead of raising; stored amounts are not validated
        ctx.traps[InvalidOperation] = False
        yield


def quantize_money(value: Decimal) -> Decimal:
    if not value.is_finite():
        return value
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def record_from_document(doc: BudgetDataDocument) -> MonthlyRecord:
    """Decode a stored row, taking year and month from its storage key."""
    try:
        key = parse_month_key(doc.month_year)
        return MonthlyRecord(
            user_id=doc.user_id,
            year=key.year,
            month=key.month,
            incomes=json.loads(doc.incomes or "[]"),
            budget_categories=json.loads(doc.budget_categories or "[]"),
            payments=json.loads(doc.payments or "[]"),
        )
    except ValueError as exc:
        raise MalformedRecord(
            f"Stored budget data {doc.user_id}/{doc.month_year} is malformed"
        ) from exc


class BudgetDataService:
    """Record store: one JSON document per (user, month)."""

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)

    def _documents(self, keys: Optional[Sequence[MonthKey]] = None):
        stmt = (
            select(BudgetDataDocument)
            .where(BudgetDataDocument.user_id == self.user_id)
            .order_by(BudgetDataDocument.month_year)
        )
        if keys is not None:
            stmt = stmt.where(
                BudgetDataDocument.month_year.in_([k.storage_key for k in keys])
            )
        try:
            return self.session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreUnavailable("Could not load budget data") from exc

    def read_month(self, year: int, month: int) -> Optional[MonthlyRecord]:
        docs = self._documents([MonthKey(year, month)])
        if not docs:
            return None
        return record_from_document(docs[0])

    def read_all_for_user(self) -> list[MonthlyRecord]:
        records: list[MonthlyRecord] = []
        for doc in self._documents():
            try:
                records.append(record_from_document(doc))
            except MalformedRecord as exc:
                logger.warning(f"budget_data_skipped: {exc}: {exc.__cause__}")
        return records

    def upsert_month(
        self,
        year: int,
        month: int,
        incomes: Iterable[IncomeSource],
        budget_categories: Iterable[BudgetCategory],
        payments: Iterable[Payment],
    ) -> MonthlyRecord:
        key = MonthKey(year, month)
        record = MonthlyRecord(
            user_id=self.user_id,
            year=key.year,
            month=key.month,
            incomes=list(incomes),
            budget_categories=list(budget_categories),
            payments=list(payments),
        )
        data = record.model_dump(
            mode="json",
            by_alias=True,
            include={"incomes", "budget_categories", "payments"},
        )
        try:
            doc = self.session.scalar(
                select(BudgetDataDocument).where(
                    BudgetDataDocument.user_id == self.user_id,
                    BudgetDataDocument.month_year == key.storage_key,
                )
            )
            if doc is None:
                doc = BudgetDataDocument(
                    user_id=self.user_id, month_year=key.storage_key
                )
                self.session.add(doc)
            doc.incomes = json.dumps(data["incomes"])
            doc.budget_categories = json.dumps(data["budgetCategories"])
            doc.payments = json.dumps(data["payments"])
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreUnavailable("Could not save budget data") from exc
        logger.info(
            f"budget_data_saved: user={self.user_id} month={key.storage_key} "
            f"incomes={len(record.incomes)} categories={len(record.budget_categories)} "
            f"payments={len(record.payments)}"
        )
        return record

    def load_month_or_seed(self, year: int, month: int) -> MonthlyRecord:
        """Return the stored month, or a fresh draft seeded with last month's categories.

        Both months are fetched in a single query; neither read depends on the
        other. The draft is not persisted.
        """
        key = MonthKey(year, month)
        prior = key.previous()
        by_key: dict[str, BudgetDataDocument] = {
            doc.month_year: doc for doc in self._documents([key, prior])
        }
        current = by_key.get(key.storage_key)
        if current is not None:
            return record_from_document(current)

        categories: list[BudgetCategory] = []
        prior_doc = by_key.get(prior.storage_key)
        if prior_doc is not None:
            try:
                categories = [
                    c.model_copy()
                    for c in record_from_document(prior_doc).budget_categories
                ]
            except MalformedRecord as exc:
                logger.warning(f"budget_data_seed_skipped: {exc}")
        return MonthlyRecord(
            user_id=self.user_id,
            year=key.year,
            month=key.month,
            budget_categories=categories,
        )

    def _mutate(
        self, year: int, month: int, change: Callable[[MonthlyRecord], object]
    ) -> object:
        record = self.load_month_or_seed(year, month)
        result = change(record)
        self.upsert_month(
            year, month, record.incomes, record.budget_categories, record.payments
        )
        return result

    def add_income(self, year: int, month: int, data: NewIncomeIn) -> IncomeSource:
        income = IncomeSource(
            id=_new_id(),
            name=data.name.strip(),
            amount=data.amount,
            date_added=data.date_added or _utcnow(),
        )
        self._mutate(year, month, lambda record: record.incomes.append(income))
        return income

    def delete_income(self, year: int, month: int, income_id: str) -> None:
        def change(record: MonthlyRecord) -> None:
            kept = [i for i in record.incomes if i.id != income_id]
            if len(kept) == len(record.incomes):
                raise RecordNotFound("Income not found")
            record.incomes = kept

        self._mutate(year, month, change)

    def add_category(self, year: int, month: int, data: NewCategoryIn) -> BudgetCategory:
        category = BudgetCategory(
            id=_new_id(),
            name=data.name.strip(),
            allocated_amount=data.allocated_amount,
            icon_name=data.icon_name,
        )
        self._mutate(
            year, month, lambda record: record.budget_categories.append(category)
        )
        return category

    def delete_category(self, year: int, month: int, category_id: str) -> None:
        """Remove a category together with every payment booked against it."""

        def change(record: MonthlyRecord) -> None:
            kept = [c for c in record.budget_categories if c.id != category_id]
            if len(kept) == len(record.budget_categories):
                raise RecordNotFound("Category not found")
            record.budget_categories = kept
            record.payments = [
                p for p in record.payments if p.category_id != category_id
            ]

        self._mutate(year, month, change)

    def add_payment(self, year: int, month: int, data: NewPaymentIn) -> Payment:
        payment = Payment(
            id=_new_id(),
            category_id=data.category_id,
            description=data.description.strip(),
            amount=data.amount,
            date=data.date or _utcnow(),
            is_transferred=data.is_transferred,
        )

        def change(record: MonthlyRecord) -> None:
            if not any(c.id == data.category_id for c in record.budget_categories):
                raise ValueError("Category not found")
            record.payments.append(payment)

        self._mutate(year, month, change)
        return payment

    def delete_payment(self, year: int, month: int, payment_id: str) -> None:
        def change(record: MonthlyRecord) -> None:
            kept = [p for p in record.payments if p.id != payment_id]
            if len(kept) == len(record.payments):
                raise RecordNotFound("Payment not found")
            record.payments = kept

        self._mutate(year, month, change)

    def set_payment_transferred(
        self, year: int, month: int, payment_id: str, is_transferred: bool
    ) -> Payment:
        def change(record: MonthlyRecord) -> Payment:
            for idx, payment in enumerate(record.payments):
                if payment.id == payment_id:
                    updated = payment.model_copy(
                        update={"is_transferred": is_transferred}
                    )
                    record.payments[idx] = updated
                    return updated
            raise RecordNotFound("Payment not found")

        return self._mutate(year, month, change)


@dataclass
class LoadResult:
    records: list[MonthlyRecord] = field(default_factory=list)
    failed: bool = False


class MonthlyDataLoader:
    """Loads a user's full monthly history for read-only views.

    Store failures never escape: they degrade to an empty result with
    ``failed`` set so the caller can show a notice.
    """

    def __init__(self, session: Session, user_id: str) -> None:
        self.store = BudgetDataService(session, user_id)
        self.user_id = self.store.user_id

    def load_all(self) -> LoadResult:
        try:
            records = self.store.read_all_for_user()
        except StoreUnavailable as exc:
            logger.error(f"load_failed: user={self.user_id} error={exc.__cause__!r}")
            return LoadResult(records=[], failed=True)
        logger.info(f"load_all: user={self.user_id} records={len(records)}")
        return LoadResult(records=records)

    def available_periods(self) -> AvailablePeriods:
        result = self.load_all()
        months_by_year: dict[int, set[int]] = {}
        for record in result.records:
            months_by_year.setdefault(record.year, set()).add(record.month)
        return AvailablePeriods(
            years=sorted(months_by_year, reverse=True),
            months_by_year={y: sorted(m) for y, m in months_by_year.items()},
            load_failed=result.failed,
        )


@dataclass(frozen=True)
class SelectedPeriod:
    kind: PeriodKind
    year: int
    month: Optional[int]
    label: str
    records: tuple[MonthlyRecord, ...]


@dataclass
class _Bucket:
    icon_rank: tuple[int, int, str]
    allocated: Decimal = ZERO
    spent: Decimal = ZERO

    @property
    def icon_name(self) -> str:
        return self.icon_rank[2]


class ReportAggregator:
    """Folds monthly records into a period summary.

    Category buckets are keyed by name, so the same name in different months
    is one logical category and its allocations accumulate. Payments resolve
    their category id against their own month only.
    """

    @staticmethod
    def select_period(
        all_records: Iterable[MonthlyRecord],
        period_kind: PeriodKind,
        year: int,
        month: Optional[int] = None,
    ) -> SelectedPeriod:
        label = period_label(period_kind, year, month)
        if period_kind == PeriodKind.monthly:
            selected = tuple(
                r for r in all_records if r.year == year and r.month == month
            )
        else:
            selected = tuple(r for r in all_records if r.year == year)
            month = None
        return SelectedPeriod(
            kind=period_kind, year=year, month=month, label=label, records=selected
        )

    @staticmethod
    def aggregate(
        selected_records: Iterable[MonthlyRecord], period_label: str = ""
    ) -> ReportPeriodSummary:
        with money_context():
            total_income = ZERO
            total_budgeted = ZERO
            total_spent = ZERO
            buckets: dict[str, _Bucket] = {}

            for record in selected_records:
                for income in record.incomes:
                    total_income += to_decimal(income.amount)

                names_by_id: dict[str, str] = {}
                for category in record.budget_categories:
                    allocated = to_decimal(category.allocated_amount)
                    total_budgeted += allocated
                    names_by_id.setdefault(category.id, category.name)
                    # the earliest month's icon wins so record order never matters
                    rank = (record.year, record.month, category.icon_name)
                    bucket = buckets.get(category.name)
                    if bucket is None:
                        bucket = _Bucket(icon_rank=rank)
                        buckets[category.name] = bucket
                    elif rank < bucket.icon_rank:
                        bucket.icon_rank = rank
                    bucket.allocated += allocated

                for payment in record.payments:
                    amount = to_decimal(payment.amount)
                    total_spent += amount
                    name = names_by_id.get(payment.category_id)
                    if name is not None:
                        buckets[name].spent += amount

            summaries = []
            for name in sorted(buckets):
                bucket = buckets[name]
                allocated = quantize_money(bucket.allocated)
                spent = quantize_money(bucket.spent)
                summaries.append(
                    ReportCategorySummary(
                        category_name=name,
                        icon_name=bucket.icon_name,
                        total_allocated=allocated,
                        total_spent_in_period=spent,
                        remaining_in_category=allocated - spent,
                    )
                )

            total_income = quantize_money(total_income)
            total_spent = quantize_money(total_spent)
            return ReportPeriodSummary(
                period_label=period_label,
                total_income=total_income,
                total_budgeted=quantize_money(total_budgeted),
                total_spent=total_spent,
                remaining_balance=total_income - total_spent,
                category_summaries=summaries,
            )

    def generate_report(
        self,
        all_records: Iterable[MonthlyRecord],
        period_kind: PeriodKind,
        year: int,
        month: Optional[int] = None,
    ) -> ReportPeriodSummary:
        selected = self.select_period(all_records, period_kind, year, month)
        return self.aggregate(selected.records, selected.label)


class ReportService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.loader = MonthlyDataLoader(session, user_id)
        self.aggregator = ReportAggregator()

    def generate(
        self, period_kind: PeriodKind, year: int, month: Optional[int] = None
    ) -> tuple[ReportPeriodSummary, bool]:
        # reject a bad period before touching the store
        period_label(period_kind, year, month)
        result = self.loader.load_all()
        summary = self.aggregator.generate_report(
            result.records, period_kind, year, month
        )
        return summary, result.failed


class DashboardService:
    """Single-month overview; categories resolve by id within the month."""

    @staticmethod
    def summarize(record: MonthlyRecord) -> DashboardSummary:
        totals = ReportAggregator.aggregate([record])

        with money_context():
            spent_by_id: dict[str, Decimal] = {}
            for payment in record.payments:
                spent_by_id[payment.category_id] = spent_by_id.get(
                    payment.category_id, ZERO
                ) + to_decimal(payment.amount)

            rows: list[CategoryProgress] = []
            for category in record.budget_categories:
                allocated = quantize_money(to_decimal(category.allocated_amount))
                spent = quantize_money(spent_by_id.get(category.id, ZERO))
                progress = float(spent / allocated * 100) if allocated > 0 else 0.0
                rows.append(
                    CategoryProgress(
                        category_id=category.id,
                        category_name=category.name,
                        icon_name=category.icon_name,
                        allocated_amount=allocated,
                        spent_amount=spent,
                        remaining_amount=allocated - spent,
                        progress_percent=round(progress, 1),
                    )
                )

            utilization = 0.0
            if totals.total_budgeted > 0:
                utilization = float(totals.total_spent / totals.total_budgeted * 100)
            over_budget = bool(totals.total_spent > totals.total_budgeted)

        return DashboardSummary(
            month_year=MonthKey(record.year, record.month).storage_key,
            total_income=totals.total_income,
            total_budgeted=totals.total_budgeted,
            total_spent=totals.total_spent,
            remaining_balance=totals.remaining_balance,
            budget_utilization=round(utilization, 1),
            over_budget=over_budget,
            categories=rows,
        )


def match_category_name(name: str, known: Sequence[str]) -> str:
    """Map an advisor-supplied category name onto one of the user's names.

    Case-insensitive exact match first, then a unique candidate within one
    edit. Anything else comes back unchanged.
    """
    clean = (name or "").strip()
    lowered = clean.lower()
    for candidate in known:
        if candidate.lower() == lowered:
            return candidate

    best_distance: Optional[int] = None
    best: list[str] = []
    for candidate in known:
        dist = int(Levenshtein.distance(lowered, candidate.strip().lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [candidate]
        elif dist == best_distance:
            best.append(candidate)
    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0]
    return clean


class AdvisorService:
    def __init__(
        self, session: Session, user_id: str, client: Optional[AdvisorClient] = None
    ) -> None:
        self.store = BudgetDataService(session, user_id)
        self.client = client or AdvisorClient()

    @staticmethod
    def snapshot(record: MonthlyRecord) -> BudgetSnapshot:
        summary = ReportAggregator.aggregate([record])
        return BudgetSnapshot(
            income=float(summary.total_income),
            budget_allocations={
                s.category_name: float(s.total_allocated)
                for s in summary.category_summaries
            },
            actual_spending={
                s.category_name: float(s.total_spent_in_period)
                for s in summary.category_summaries
            },
        )

    @staticmethod
    def payment_highlighting(record: MonthlyRecord) -> dict[str, bool]:
        names_by_id = {c.id: c.name for c in record.budget_categories}
        flags: dict[str, bool] = {}
        for payment in record.payments:
            name = names_by_id.get(payment.category_id)
            if name is not None:
                flags[name] = payment.is_transferred
        return flags

    def _record(self, year: int, month: int) -> MonthlyRecord:
        record = self.store.read_month(year, month)
        if record is None:
            raise RecordNotFound("Data not found for this user and month")
        return record

    def suggest_optimizations(self, year: int, month: int) -> OptimizationsOut:
        record = self._record(year, month)
        result = self.client.suggest_budget_optimizations(self.snapshot(record))
        known = [c.name for c in record.budget_categories]
        for suggestion in result.suggestions:
            suggestion.category = match_category_name(suggestion.category, known)
        return result

    def identify_overspending(self, year: int, month: int) -> OverspendingOut:
        record = self._record(year, month)
        result = self.client.identify_potential_overspending(
            self.snapshot(record), self.payment_highlighting(record)
        )
        known = [c.name for c in record.budget_categories]
        result.overspending_categories = [
            match_category_name(name, known) for name in result.overspending_categories
        ]
        return result
