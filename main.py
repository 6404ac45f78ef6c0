import logging
from typing import NoReturn, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from advisor import AdvisorClient, AdvisorUnavailable
from config import get_settings
from csv_utils import export_report
from database import get_db
from models import PeriodKind
from periods import MonthKey, PeriodSelectionError, parse_month_key
from schemas import (
    AvailablePeriods,
    BudgetCategory,
    BudgetDataIn,
    DashboardSummary,
    IncomeSource,
    InitialBudgetIn,
    InitialBudgetOut,
    MonthlyRecord,
    NewCategoryIn,
    NewIncomeIn,
    NewPaymentIn,
    OptimizationsOut,
    OverspendingOut,
    Payment,
    ReportOut,
    TransferFlagIn,
)
from services import (
    AdvisorService,
    BudgetDataService,
    DashboardService,
    MalformedRecord,
    MonthlyDataLoader,
    RecordNotFound,
    ReportService,
    StoreUnavailable,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="BudgetWise")


def get_advisor_client() -> AdvisorClient:
    return AdvisorClient()


def month_from_path(month_year: str) -> MonthKey:
    try:
        return parse_month_key(month_year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def store_for(db: Session, user_id: str) -> BudgetDataService:
    try:
        return BudgetDataService(db, user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def period_from_request(request: Request) -> tuple[PeriodKind, int, Optional[int]]:
    try:
        kind = PeriodKind(request.query_params.get("period", "monthly"))
        year = int(request.query_params["year"])
        month_raw = request.query_params.get("month")
        month = int(month_raw) if month_raw not in (None, "") else None
    except KeyError as exc:
        raise HTTPException(status_code=400, detail="Year is required") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return kind, year, month


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, RecordNotFound):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailable):
        raise HTTPException(status_code=503, detail="Could not load data") from exc
    if isinstance(exc, MalformedRecord):
        logger.error(f"malformed_record: {exc}")
        raise HTTPException(
            status_code=500, detail="Stored data for this month is malformed"
        ) from exc
    if isinstance(exc, AdvisorUnavailable):
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise exc


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/budget-data/user/{user_id}", response_model=list[MonthlyRecord])
def all_budget_data(user_id: str, db: Session = Depends(get_db)):
    store = store_for(db, user_id)
    try:
        return store.read_all_for_user()
    except StoreUnavailable as exc:
        _raise_http(exc)


@app.get(
    "/api/budget-data/user/{user_id}/month/{month_year}",
    response_model=MonthlyRecord,
)
def month_budget_data(
    user_id: str, month_year: str, request: Request, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    store = store_for(db, user_id)
    seed = request.query_params.get("seed", "").lower() in {"1", "true", "yes"}
    try:
        if seed:
            return store.load_month_or_seed(key.year, key.month)
        record = store.read_month(key.year, key.month)
    except (StoreUnavailable, MalformedRecord) as exc:
        _raise_http(exc)
    if record is None:
        raise HTTPException(
            status_code=404, detail="Data not found for this user and month"
        )
    return record


@app.post("/api/budget-data/user/{user_id}/month/{month_year}")
def save_month_budget_data(
    user_id: str, month_year: str, data: BudgetDataIn, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    store = store_for(db, user_id)
    try:
        store.upsert_month(
            key.year, key.month, data.incomes, data.budget_categories, data.payments
        )
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)
    return {"message": "Data saved successfully"}


@app.post(
    "/api/budget-data/user/{user_id}/month/{month_year}/incomes",
    response_model=IncomeSource,
    status_code=201,
)
def add_income(
    user_id: str, month_year: str, data: NewIncomeIn, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    try:
        return store_for(db, user_id).add_income(key.year, key.month, data)
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)


@app.delete(
    "/api/budget-data/user/{user_id}/month/{month_year}/incomes/{income_id}",
    status_code=204,
)
def delete_income(
    user_id: str, month_year: str, income_id: str, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    try:
        store_for(db, user_id).delete_income(key.year, key.month, income_id)
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)
    return Response(status_code=204)


@app.post(
    "/api/budget-data/user/{user_id}/month/{month_year}/categories",
    response_model=BudgetCategory,
    status_code=201,
)
def add_category(
    user_id: str, month_year: str, data: NewCategoryIn, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    try:
        return store_for(db, user_id).add_category(key.year, key.month, data)
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)


@app.delete(
    "/api/budget-data/user/{user_id}/month/{month_year}/categories/{category_id}",
    status_code=204,
)
def delete_category(
    user_id: str, month_year: str, category_id: str, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    try:
        store_for(db, user_id).delete_category(key.year, key.month, category_id)
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)
    return Response(status_code=204)


@app.post(
    "/api/budget-data/user/{user_id}/month/{month_year}/payments",
    response_model=Payment,
    status_code=201,
)
def add_payment(
    user_id: str, month_year: str, data: NewPaymentIn, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    try:
        return store_for(db, user_id).add_payment(key.year, key.month, data)
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)


@app.delete(
    "/api/budget-data/user/{user_id}/month/{month_year}/payments/{payment_id}",
    status_code=204,
)
def delete_payment(
    user_id: str, month_year: str, payment_id: str, db: Session = Depends(get_db)
):
    key = month_from_path(month_year)
    try:
        store_for(db, user_id).delete_payment(key.year, key.month, payment_id)
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)
    return Response(status_code=204)


@app.patch(
    "/api/budget-data/user/{user_id}/month/{month_year}/payments/{payment_id}/transferred",
    response_model=Payment,
)
def set_payment_transferred(
    user_id: str,
    month_year: str,
    payment_id: str,
    data: TransferFlagIn,
    db: Session = Depends(get_db),
):
    key = month_from_path(month_year)
    try:
        return store_for(db, user_id).set_payment_transferred(
            key.year, key.month, payment_id, data.is_transferred
        )
    except (StoreUnavailable, ValueError) as exc:
        _raise_http(exc)


@app.get(
    "/api/dashboard/user/{user_id}/month/{month_year}",
    response_model=DashboardSummary,
)
def dashboard(user_id: str, month_year: str, db: Session = Depends(get_db)):
    key = month_from_path(month_year)
    try:
        record = store_for(db, user_id).load_month_or_seed(key.year, key.month)
    except (StoreUnavailable, MalformedRecord) as exc:
        _raise_http(exc)
    return DashboardService.summarize(record)


def _report(request: Request, user_id: str, db: Session):
    kind, year, month = period_from_request(request)
    try:
        return ReportService(db, user_id).generate(kind, year, month)
    except PeriodSelectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValueError as exc:
        _raise_http(exc)


@app.get("/api/reports/user/{user_id}", response_model=ReportOut)
def report(user_id: str, request: Request, db: Session = Depends(get_db)):
    summary, load_failed = _report(request, user_id, db)
    if load_failed:
        logger.warning(f"report_degraded: user={user_id} reason=load_failed")
    return ReportOut(report=summary, load_failed=load_failed)


@app.get("/api/reports/user/{user_id}/periods", response_model=AvailablePeriods)
def report_periods(user_id: str, db: Session = Depends(get_db)):
    try:
        loader = MonthlyDataLoader(db, user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return loader.available_periods()


@app.get("/api/reports/user/{user_id}/export.csv")
def export_report_csv(user_id: str, request: Request, db: Session = Depends(get_db)):
    summary, load_failed = _report(request, user_id, db)
    if load_failed:
        raise HTTPException(status_code=503, detail="Could not load data")
    slug = summary.period_label.lower().replace(" ", "_")
    return Response(
        content=export_report(summary),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="report_{slug}.csv"'},
    )


@app.post(
    "/api/advisor/user/{user_id}/month/{month_year}/optimizations",
    response_model=OptimizationsOut,
)
def advisor_optimizations(
    user_id: str,
    month_year: str,
    db: Session = Depends(get_db),
    client: AdvisorClient = Depends(get_advisor_client),
):
    key = month_from_path(month_year)
    try:
        return AdvisorService(db, user_id, client).suggest_optimizations(
            key.year, key.month
        )
    except (StoreUnavailable, AdvisorUnavailable, ValueError) as exc:
        _raise_http(exc)


@app.post(
    "/api/advisor/user/{user_id}/month/{month_year}/overspending",
    response_model=OverspendingOut,
)
def advisor_overspending(
    user_id: str,
    month_year: str,
    db: Session = Depends(get_db),
    client: AdvisorClient = Depends(get_advisor_client),
):
    key = month_from_path(month_year)
    try:
        return AdvisorService(db, user_id, client).identify_overspending(
            key.year, key.month
        )
    except (StoreUnavailable, AdvisorUnavailable, ValueError) as exc:
        _raise_http(exc)


@app.post("/api/advisor/initial-budget", response_model=InitialBudgetOut)
def advisor_initial_budget(
    data: InitialBudgetIn, client: AdvisorClient = Depends(get_advisor_client)
):
    try:
        return client.generate_initial_budget(data)
    except AdvisorUnavailable as exc:
        _raise_http(exc)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
