import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.orm import Session

from amounts import format_currency, parse_amount, parse_optional_amount
from csrf import generate_csrf_token, validate_csrf_token
from database import PersistenceFailure, SessionLocal
from models import (
    Account,
    AccountType,
    Category,
    RecurringCharge,
    RecurringFrequency,
    Transaction,
    TransactionType,
)
from periods import HISTORY_WINDOWS, Period, resolve_period
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BalancePointOut,
    CategoryIn,
    ExpenseMetricsComparisonOut,
    ExpenseMetricsOut,
    RecurringChargeIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import (
    AccountService,
    BalanceSnapshotService,
    CategoryService,
    MetricsService,
    RecurringChargeService,
    TransactionPage,
    TransactionService,
    local_today,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Ledger")

CHANGE_TRIGGER = {"HX-Trigger": "ledger-changed"}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(PersistenceFailure)
async def persistence_failure_handler(request: Request, exc: PersistenceFailure):
    logger.error(f"persistence_failure: path={request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "The ledger is temporarily unavailable. Please try again."},
    )


def service_error(exc: ValueError) -> HTTPException:
    status_code = 404 if "not found" in str(exc).lower() else 400
    return HTTPException(status_code=status_code, detail=str(exc))


def mutation_response(request: Request, redirect_to: str) -> Response:
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers=CHANGE_TRIGGER)
    return RedirectResponse(url=redirect_to, status_code=303, headers=CHANGE_TRIGGER)


async def checked_form(request: Request):
    form = await request.form()
    if not validate_csrf_token(str(form.get("csrf_token", ""))):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return form


def _text(form, key: str) -> Optional[str]:
    value = form.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _optional_int(form, key: str) -> Optional[int]:
    value = _text(form, key)
    return int(value) if value is not None else None


def _parse_moment(value: str) -> datetime:
    return datetime.fromisoformat(value.strip())


def _month_param(value: Optional[str]) -> date:
    if not value:
        return local_today()
    year_str, month_str = value.split("-", 1)
    return date(int(year_str), int(month_str), 1)


def account_json(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance_cents": account.balance_cents,
        "balance_display": format_currency(account.balance_cents, account.currency),
        "currency": account.currency,
        "credit_limit_cents": account.credit_limit_cents,
        "apr": str(account.apr) if account.apr is not None else None,
        "loan_amount_cents": account.loan_amount_cents,
        "remaining_balance_cents": account.remaining_balance_cents,
        "loan_term_months": account.loan_term_months,
        "monthly_payment_cents": account.monthly_payment_cents,
    }


def category_json(category: Optional[Category]) -> Optional[dict[str, object]]:
    if category is None:
        return None
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon,
    }


def transaction_json(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "amount_cents": txn.amount_cents,
        "type": txn.type.value,
        "date": txn.date.isoformat(),
        "description": txn.description,
        "notes": txn.notes,
        "is_recurring": txn.is_recurring,
        "recurring_id": txn.recurring_id,
        "category": category_json(txn.category),
    }


def recurring_json(charge: RecurringCharge) -> dict[str, object]:
    return {
        "id": charge.id,
        "name": charge.name,
        "amount_cents": charge.amount_cents,
        "frequency": charge.frequency.value,
        "next_due_date": charge.next_due_date.isoformat(),
        "account": {
            "id": charge.account.id,
            "name": charge.account.name,
            "type": charge.account.type.value,
        },
        "category": category_json(charge.category),
    }


def page_json(page: TransactionPage) -> dict[str, object]:
    return {
        "items": [transaction_json(txn) for txn in page.items],
        "total": page.total,
        "has_more": page.has_more,
    }


def period_from_request(request: Request) -> Period:
    try:
        return resolve_period(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def window_from_request(request: Request) -> str:
    window = request.query_params.get("window", "1M")
    if window not in HISTORY_WINDOWS:
        raise HTTPException(status_code=400, detail=f"Unsupported window: {window}")
    return window


def paging_from_request(request: Request, default_limit: int) -> tuple[int, int]:
    try:
        limit = int(request.query_params.get("limit", str(default_limit)))
        offset = int(request.query_params.get("offset", "0"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid paging") from exc
    return min(max(limit, 1), 200), max(offset, 0)


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"csrf_token": generate_csrf_token()}


@app.get("/api/dashboard")
def api_dashboard(db: Session = Depends(get_db)):
    comparison = MetricsService(db).expense_metrics_with_comparison()
    return {
        "expense_metrics": ExpenseMetricsComparisonOut(**comparison.to_dict()),
    }


@app.get("/api/metrics/monthly", response_model=ExpenseMetricsOut)
def api_monthly_metrics(request: Request, db: Session = Depends(get_db)):
    try:
        month = _month_param(request.query_params.get("month"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid month") from exc
    metrics = MetricsService(db).monthly_expense_metrics(month)
    return ExpenseMetricsOut(**metrics.to_dict())


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [account_json(a) for a in AccountService(db).list_all()]


@app.get("/api/accounts/summary")
def api_accounts_summary(db: Session = Depends(get_db)):
    summary = AccountService(db).summary()
    return {
        group: [account_json(a) for a in accounts]
        for group, accounts in summary.items()
    }


@app.get("/api/accounts/history")
def api_combined_history(request: Request, db: Session = Depends(get_db)):
    window = window_from_request(request)
    raw_ids = request.query_params.get("ids", "")
    try:
        account_ids = [int(part) for part in raw_ids.split(",") if part.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid account ids") from exc
    points = BalanceSnapshotService(db).combined_history(account_ids, window)
    return [
        BalancePointOut(date=p.date, balance_cents=p.balance_cents) for p in points
    ]


@app.get("/api/accounts/{account_id}/history")
def api_account_history(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    window = window_from_request(request)
    try:
        points = BalanceSnapshotService(db).history(account_id, window)
    except ValueError as exc:
        raise service_error(exc) from exc
    return [
        BalancePointOut(date=p.date, balance_cents=p.balance_cents) for p in points
    ]


@app.get("/api/accounts/{account_id}/transactions")
def api_account_transactions(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    limit, offset = paging_from_request(request, 20)
    try:
        page = AccountService(db).transactions(account_id, limit=limit, offset=offset)
    except ValueError as exc:
        raise service_error(exc) from exc
    return page_json(page)


@app.post("/accounts")
async def create_account(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = AccountIn(
            name=_text(form, "name") or "",
            type=AccountType(form["type"]),
            balance_cents=parse_optional_amount(
                _text(form, "balance"), allow_negative=True
            )
            or 0,
            currency=_text(form, "currency") or "USD",
            credit_limit_cents=parse_optional_amount(_text(form, "credit_limit")),
            apr=Decimal(_text(form, "apr")) if _text(form, "apr") else None,
            loan_amount_cents=parse_optional_amount(_text(form, "loan_amount")),
            remaining_balance_cents=parse_optional_amount(
                _text(form, "remaining_balance")
            ),
            loan_term_months=_optional_int(form, "loan_term"),
            monthly_payment_cents=parse_optional_amount(_text(form, "monthly_payment")),
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AccountService(db).create(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, "/api/accounts")


@app.post("/accounts/{account_id}/edit")
async def edit_account(account_id: int, request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        fields: dict[str, object] = {}
        if _text(form, "name") is not None:
            fields["name"] = _text(form, "name")
        if _text(form, "balance") is not None:
            fields["balance_cents"] = parse_amount(
                _text(form, "balance"), allow_negative=True
            )
        if _text(form, "currency") is not None:
            fields["currency"] = _text(form, "currency")
        for form_key, field in (
            ("credit_limit", "credit_limit_cents"),
            ("loan_amount", "loan_amount_cents"),
            ("remaining_balance", "remaining_balance_cents"),
            ("monthly_payment", "monthly_payment_cents"),
        ):
            if _text(form, form_key) is not None:
                fields[field] = parse_amount(_text(form, form_key))
        if _text(form, "loan_term") is not None:
            fields["loan_term_months"] = _optional_int(form, "loan_term")
        if _text(form, "apr") is not None:
            fields["apr"] = Decimal(_text(form, "apr"))
        data = AccountUpdateIn(**fields)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AccountService(db).update(account_id, data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, "/api/accounts")


@app.post("/accounts/{account_id}/delete")
async def delete_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        message = AccountService(db).delete(account_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    logger.info(f"account_delete_request: id={account_id} result={message!r}")
    return mutation_response(request, "/api/accounts")


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    limit, offset = paging_from_request(request, 50)
    items = TransactionService(db).list(period, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [transaction_json(txn) for txn in items[:limit]],
        "has_more": has_more,
    }


@app.post("/transactions")
async def create_transaction(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = TransactionIn(
            account_id=int(form["account_id"]),
            amount_cents=parse_amount(str(form["amount"])),
            type=TransactionType(form["type"]),
            date=_parse_moment(str(form["date"])),
            description=_text(form, "description"),
            notes=_text(form, "notes"),
            is_recurring=form.get("is_recurring") == "on",
            category_id=_optional_int(form, "category_id"),
            recurring_id=_optional_int(form, "recurring_id"),
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        TransactionService(db).create(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, f"/api/accounts/{data.account_id}/transactions")


@app.post("/transactions/{transaction_id}/edit")
async def edit_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        fields: dict[str, object] = {}
        if _text(form, "amount") is not None:
            fields["amount_cents"] = parse_amount(_text(form, "amount"))
        if _text(form, "type") is not None:
            fields["type"] = TransactionType(_text(form, "type"))
        if _text(form, "date") is not None:
            fields["date"] = _parse_moment(_text(form, "date"))
        for key in ("description", "notes"):
            if key in form:
                fields[key] = _text(form, key)
        if "is_recurring" in form:
            fields["is_recurring"] = form.get("is_recurring") == "on"
        for key in ("category_id", "recurring_id"):
            if key in form:
                fields[key] = _optional_int(form, key)
        data = TransactionUpdateIn(**fields)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, f"/api/accounts/{txn.account_id}/transactions")


@app.post("/transactions/{transaction_id}/delete")
async def delete_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, "/api/transactions")


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    return [category_json(c) for c in CategoryService(db).list_all()]


@app.post("/categories")
async def create_category(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = CategoryIn(
            name=_text(form, "name") or "",
            color=_text(form, "color"),
            icon=_text(form, "icon"),
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        CategoryService(db).create(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, "/api/categories")


@app.get("/api/recurring")
def api_recurring(db: Session = Depends(get_db)):
    return [recurring_json(c) for c in RecurringChargeService(db).list_all()]


@app.get("/api/recurring/{recurring_id}/transactions")
def api_recurring_transactions(
    recurring_id: int, request: Request, db: Session = Depends(get_db)
):
    limit, offset = paging_from_request(request, 100)
    try:
        page = RecurringChargeService(db).transactions(
            recurring_id, limit=limit, offset=offset
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    return page_json(page)


@app.post("/recurring")
async def create_recurring(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = RecurringChargeIn(
            name=_text(form, "name") or "",
            account_id=int(form["account_id"]),
            category_id=_optional_int(form, "category_id"),
            amount_cents=parse_amount(str(form["amount"])),
            frequency=RecurringFrequency(form.get("frequency") or "monthly"),
            next_due_date=date.fromisoformat(str(form["next_due_date"])),
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        RecurringChargeService(db).create(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, "/api/recurring")


@app.post("/recurring/{recurring_id}/delete")
async def delete_recurring(
    recurring_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        RecurringChargeService(db).delete(recurring_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return mutation_response(request, "/api/recurring")


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
