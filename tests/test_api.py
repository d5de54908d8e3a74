from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from database import Base, PersistenceFailure
from main import app, get_db
from models import Account, AccountType, Transaction
from services import MetricsService, local_now


@pytest.fixture()
def db_sessionmaker():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield SessionLocal
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_sessionmaker):
    return TestClient(app)


def csrf(client) -> str:
    return client.get("/api/csrf-token").json()["csrf_token"]


def post(client, url: str, data: dict) -> object:
    return client.post(
        url,
        data={**data, "csrf_token": csrf(client)},
        headers={"HX-Request": "true"},
    )


def test_dashboard_is_all_zero_without_transactions(client) -> None:
    response = client.get("/api/dashboard")
    assert response.status_code == 200
    metrics = response.json()["expense_metrics"]
    assert metrics["total_expenses"] == 0
    assert metrics["total_expenses_change"] == 0.0
    assert len(metrics) == 10


def test_create_account_and_transaction_updates_balance(client, db_sessionmaker) -> None:
    response = post(
        client,
        "/accounts",
        {"name": "Checking", "type": "checking", "balance": "1,000.00"},
    )
    assert response.status_code == 204
    assert response.headers["HX-Trigger"] == "ledger-changed"

    accounts = client.get("/api/accounts").json()
    assert accounts[0]["balance_cents"] == 100_000
    account_id = accounts[0]["id"]

    now = local_now().replace(microsecond=0)
    response = post(
        client,
        "/transactions",
        {
            "account_id": str(account_id),
            "amount": "25.50",
            "type": "expense",
            "date": now.isoformat(),
            "description": "Groceries",
        },
    )
    assert response.status_code == 204

    accounts = client.get("/api/accounts").json()
    assert accounts[0]["balance_cents"] == 97_450
    assert accounts[0]["balance_display"] == "974.50 USD"

    dashboard = client.get("/api/dashboard").json()["expense_metrics"]
    assert dashboard["total_expenses"] == 2_550
    assert dashboard["total_expenses_change"] == 100.0

    page = client.get(f"/api/accounts/{account_id}/transactions").json()
    assert page["total"] == 1
    txn_id = page["items"][0]["id"]

    response = post(client, f"/transactions/{txn_id}/delete", {})
    assert response.status_code == 204
    assert client.get("/api/accounts").json()[0]["balance_cents"] == 100_000


def test_invalid_csrf_token_is_rejected(client, db_sessionmaker) -> None:
    response = client.post(
        "/accounts",
        data={"name": "Checking", "type": "checking", "csrf_token": "forged"},
    )
    assert response.status_code == 400
    with db_sessionmaker() as session:
        assert session.scalars(select(Account)).all() == []


def test_credit_card_form_requires_limit(client) -> None:
    response = post(client, "/accounts", {"name": "Visa", "type": "credit_card"})
    assert response.status_code == 400


def test_non_positive_transaction_amount_is_rejected(client, db_sessionmaker) -> None:
    with db_sessionmaker() as session:
        account = Account(
            user_id=1, name="Checking", type=AccountType.checking, balance_cents=500
        )
        session.add(account)
        session.commit()
        account_id = account.id

    response = post(
        client,
        "/transactions",
        {
            "account_id": str(account_id),
            "amount": "0",
            "type": "expense",
            "date": datetime(2024, 11, 3).isoformat(),
        },
    )
    assert response.status_code == 400
    with db_sessionmaker() as session:
        assert session.scalars(select(Transaction)).all() == []
        assert session.get(Account, account_id).balance_cents == 500


def test_missing_account_is_not_found(client) -> None:
    assert client.get("/api/accounts/404/transactions").status_code == 404
    response = post(client, "/accounts/404/delete", {})
    assert response.status_code == 404


def test_monthly_metrics_endpoint(client) -> None:
    response = client.get("/api/metrics/monthly", params={"month": "2024-11"})
    assert response.status_code == 200
    assert response.json() == {
        "total_expenses": 0,
        "interest_paid": 0,
        "recurring_charges": 0,
        "credit_card_spending": 0,
        "loan_payments": 0,
    }
    assert client.get("/api/metrics/monthly", params={"month": "nope"}).status_code == 400


def test_history_rejects_unknown_window(client) -> None:
    response = client.get("/api/accounts/history", params={"ids": "1", "window": "2W"})
    assert response.status_code == 400


def test_account_history_falls_back_to_current_balance(client, db_sessionmaker) -> None:
    with db_sessionmaker() as session:
        account = Account(
            user_id=1, name="Savings", type=AccountType.savings, balance_cents=8_800
        )
        session.add(account)
        session.commit()
        account_id = account.id

    response = client.get(f"/api/accounts/{account_id}/history", params={"window": "1W"})
    assert response.status_code == 200
    points = response.json()
    assert len(points) == 1
    assert points[0]["balance_cents"] == 8_800
    assert points[0]["date"] == local_now().date().isoformat()


def test_offset_dates_are_stored_as_local_time(client, db_sessionmaker) -> None:
    with db_sessionmaker() as session:
        account = Account(
            user_id=1, name="Checking", type=AccountType.checking, balance_cents=0
        )
        session.add(account)
        session.commit()
        account_id = account.id

    response = post(
        client,
        "/transactions",
        {
            "account_id": str(account_id),
            "amount": "10",
            "type": "expense",
            "date": "2024-11-30T23:30:00-05:00",
        },
    )
    assert response.status_code == 204

    expected = (
        datetime(2024, 12, 1, 4, 30, tzinfo=timezone.utc)
        .astimezone(ZoneInfo(get_settings().timezone))
        .replace(tzinfo=None)
    )
    with db_sessionmaker() as session:
        assert session.scalars(select(Transaction.date)).all() == [expected]


class UnavailableSession(Session):
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def unavailable_db():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return sessionmaker(bind=engine, class_=UnavailableSession)()


def test_metrics_fetch_failure_is_a_persistence_failure() -> None:
    with pytest.raises(PersistenceFailure):
        MetricsService(unavailable_db(), user_id=1).monthly_expense_metrics(
            datetime(2024, 11, 1)
        )


def test_dashboard_reports_unavailable_ledger(db_sessionmaker) -> None:
    def override_get_db():
        db = unavailable_db()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    response = TestClient(app).get("/api/dashboard")
    assert response.status_code == 503
    assert response.json() == {
        "detail": "The ledger is temporarily unavailable. Please try again."
    }
    assert "expense_metrics" not in response.json()
