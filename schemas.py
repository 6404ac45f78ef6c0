from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Report figures stay exact Decimals in Python and render as JSON numbers.
Money = Annotated[
    Decimal,
    Field(allow_inf_nan=True),
    PlainSerializer(float, return_type=float, when_used="json"),
]


# Upper bound for entered amounts; stored records are not re-checked.
MAX_AMOUNT = 1e12


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IncomeSource(CamelModel):
    id: str
    name: str
    amount: float
    date_added: datetime


class BudgetCategory(CamelModel):
    id: str
    name: str
    allocated_amount: float
    icon_name: str = "HelpCircle"


class Payment(CamelModel):
    id: str
    category_id: str
    description: str
    amount: float
    date: datetime
    is_transferred: bool = False


class MonthlyRecord(CamelModel):
    user_id: str
    year: int
    month: int = Field(..., ge=0, le=11)
    incomes: list[IncomeSource] = Field(default_factory=list)
    budget_categories: list[BudgetCategory] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)


class IncomeSourceIn(IncomeSource):
    name: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)


class BudgetCategoryIn(BudgetCategory):
    name: str = Field(..., min_length=1, max_length=100)
    allocated_amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    icon_name: str = Field(default="HelpCircle", min_length=1, max_length=64)


class PaymentIn(Payment):
    category_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)


class BudgetDataIn(CamelModel):
    incomes: list[IncomeSourceIn] = Field(default_factory=list)
    budget_categories: list[BudgetCategoryIn] = Field(default_factory=list)
    payments: list[PaymentIn] = Field(default_factory=list)


class NewIncomeIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    date_added: Optional[datetime] = None


class NewCategoryIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    allocated_amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    icon_name: str = Field(default="HelpCircle", min_length=1, max_length=64)


class NewPaymentIn(CamelModel):
    category_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    date: Optional[datetime] = None
    is_transferred: bool = False


class TransferFlagIn(CamelModel):
    is_transferred: bool


class ReportCategorySummary(CamelModel):
    category_name: str
    icon_name: str
    total_allocated: Money
    total_spent_in_period: Money
    remaining_in_category: Money


class ReportPeriodSummary(CamelModel):
    period_label: str
    total_income: Money
    total_budgeted: Money
    total_spent: Money
    remaining_balance: Money
    category_summaries: list[ReportCategorySummary] = Field(default_factory=list)


class ReportOut(CamelModel):
    report: ReportPeriodSummary
    load_failed: bool = False


class AvailablePeriods(CamelModel):
    years: list[int]
    months_by_year: dict[int, list[int]]
    load_failed: bool = False


class CategoryProgress(CamelModel):
    category_id: str
    category_name: str
    icon_name: str
    allocated_amount: Money
    spent_amount: Money
    remaining_amount: Money
    progress_percent: float


class DashboardSummary(CamelModel):
    month_year: str
    total_income: Money
    total_budgeted: Money
    total_spent: Money
    remaining_balance: Money
    budget_utilization: float
    over_budget: bool
    categories: list[CategoryProgress] = Field(default_factory=list)


class BudgetSnapshot(CamelModel):
    income: float
    budget_allocations: dict[str, float]
    actual_spending: dict[str, float]


class OptimizationSuggestion(BaseModel):
    category: str
    suggestion: str
    impact: str


class OptimizationsOut(BaseModel):
    suggestions: list[OptimizationSuggestion] = Field(default_factory=list)


class OverspendingOut(CamelModel):
    overspending_categories: list[str] = Field(default_factory=list)
    suggestions: str = ""


class InitialBudgetIn(CamelModel):
    income: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False)
    family_size: int = Field(..., ge=1, le=20)


class InitialBudgetOut(BaseModel):
    housing: float
    food: float
    transportation: float
    utilities: float
    healthcare: float
    insurance: float
    entertainment: float
    savings: float
    other: float
