from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base, PersistenceFailure, unit_of_work
from ledger import LedgerValidationError
from models import Account, AccountType, Transaction, TransactionType
from periods import Period
from schemas import CategoryIn, RecurringChargeIn, TransactionIn, TransactionUpdateIn
from services import (
    CategoryService,
    RecurringChargeService,
    TransactionService,
    _adjust_balance,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_account(session, name, account_type, balance_cents=0, user_id=1):
    account = Account(
        user_id=user_id, name=name, type=account_type, balance_cents=balance_cents
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def balance_of(session, account_id: int) -> int:
    return session.scalar(
        select(Account.balance_cents).where(Account.id == account_id)
    )


def test_checking_balance_follows_create_update_delete() -> None:
    session = make_session()
    checking = make_account(session, "Checking", AccountType.checking, 100_000)
    txns = TransactionService(session, user_id=1)

    rent = txns.create(
        TransactionIn(
            account_id=checking.id,
            amount_cents=60_000,
            type=TransactionType.expense,
            date=datetime(2024, 11, 1, 8, 0),
            description="Rent",
        )
    )
    assert balance_of(session, checking.id) == 40_000

    txns.update(rent.id, TransactionUpdateIn(amount_cents=55_000))
    assert balance_of(session, checking.id) == 45_000

    txns.update(rent.id, TransactionUpdateIn(type=TransactionType.income))
    assert balance_of(session, checking.id) == 155_000

    txns.delete(rent.id)
    assert balance_of(session, checking.id) == 100_000
    assert session.get(Transaction, rent.id) is None


def test_credit_card_debt_grows_with_spending() -> None:
    session = make_session()
    card = make_account(session, "Visa", AccountType.credit_card, 0)
    txns = TransactionService(session, user_id=1)

    purchase = txns.create(
        TransactionIn(
            account_id=card.id,
            amount_cents=10_000,
            type=TransactionType.expense,
            date=datetime(2024, 11, 3),
        )
    )
    txns.create(
        TransactionIn(
            account_id=card.id,
            amount_cents=350,
            type=TransactionType.interest_charge,
            date=datetime(2024, 11, 28),
        )
    )
    txns.create(
        TransactionIn(
            account_id=card.id,
            amount_cents=4_000,
            type=TransactionType.income,
            date=datetime(2024, 11, 29),
        )
    )
    assert balance_of(session, card.id) == 6_350

    txns.delete(purchase.id)
    assert balance_of(session, card.id) == -3_650


def test_transfer_leaves_balance_untouched() -> None:
    session = make_session()
    savings = make_account(session, "Savings", AccountType.savings, 25_000)
    TransactionService(session, user_id=1).create(
        TransactionIn(
            account_id=savings.id,
            amount_cents=5_000,
            type=TransactionType.transfer,
            date=datetime(2024, 11, 3),
        )
    )
    assert balance_of(session, savings.id) == 25_000


def test_update_without_amount_or_type_does_not_move_balance() -> None:
    session = make_session()
    checking = make_account(session, "Checking", AccountType.checking, 1_000)
    txns = TransactionService(session, user_id=1)
    coffee = txns.create(
        TransactionIn(
            account_id=checking.id,
            amount_cents=450,
            type=TransactionType.expense,
            date=datetime(2024, 11, 3),
        )
    )

    updated = txns.update(
        coffee.id,
        TransactionUpdateIn(description="Coffee", date=datetime(2024, 11, 4)),
    )
    assert updated.description == "Coffee"
    assert updated.date == datetime(2024, 11, 4)
    assert balance_of(session, checking.id) == 550


def test_rejects_foreign_account_and_category() -> None:
    session = make_session()
    theirs = make_account(session, "Theirs", AccountType.checking, user_id=2)
    mine = make_account(session, "Mine", AccountType.checking, user_id=1)
    other_category = CategoryService(session, user_id=2).create(CategoryIn(name="Food"))
    txns = TransactionService(session, user_id=1)

    with pytest.raises(ValueError, match="Account not found"):
        txns.create(
            TransactionIn(
                account_id=theirs.id,
                amount_cents=100,
                type=TransactionType.expense,
                date=datetime(2024, 11, 3),
            )
        )
    with pytest.raises(ValueError, match="Category not found"):
        txns.create(
            TransactionIn(
                account_id=mine.id,
                amount_cents=100,
                type=TransactionType.expense,
                date=datetime(2024, 11, 3),
                category_id=other_category.id,
            )
        )
    assert session.scalars(select(Transaction)).all() == []


def test_unknown_transaction_raises_not_found() -> None:
    session = make_session()
    txns = TransactionService(session, user_id=1)
    with pytest.raises(ValueError, match="Transaction not found"):
        txns.update(999, TransactionUpdateIn(amount_cents=5))
    with pytest.raises(ValueError, match="Transaction not found"):
        txns.delete(999)


def test_recurring_link_marks_transaction_recurring() -> None:
    session = make_session()
    card = make_account(session, "Visa", AccountType.credit_card)
    charge = RecurringChargeService(session, user_id=1).create(
        RecurringChargeIn(
            name="Streaming",
            account_id=card.id,
            amount_cents=1_599,
            next_due_date=date(2024, 12, 1),
        )
    )
    txn = TransactionService(session, user_id=1).create(
        TransactionIn(
            account_id=card.id,
            amount_cents=1_599,
            type=TransactionType.expense,
            date=datetime(2024, 11, 1),
            recurring_id=charge.id,
        )
    )
    assert txn.is_recurring is True

    RecurringChargeService(session, user_id=1).delete(charge.id)
    session.refresh(txn)
    assert txn.recurring_id is None
    assert txn.is_recurring is True


def test_list_filters_by_period() -> None:
    session = make_session()
    checking = make_account(session, "Checking", AccountType.checking)
    txns = TransactionService(session, user_id=1)
    for moment in (datetime(2024, 10, 31, 22, 0), datetime(2024, 11, 30, 23, 30)):
        txns.create(
            TransactionIn(
                account_id=checking.id,
                amount_cents=100,
                type=TransactionType.income,
                date=moment,
            )
        )

    november = txns.list(Period("custom", date(2024, 11, 1), date(2024, 11, 30)))
    assert [t.date for t in november] == [datetime(2024, 11, 30, 23, 30)]


def test_ledger_rejection_happens_before_any_write() -> None:
    session = make_session()
    checking = make_account(session, "Checking", AccountType.checking, 500)
    txns = TransactionService(session, user_id=1)
    payload = TransactionIn.model_construct(
        account_id=checking.id,
        amount_cents=0,
        type=TransactionType.expense,
        date=datetime(2024, 11, 3),
        description=None,
        notes=None,
        is_recurring=False,
        category_id=None,
        recurring_id=None,
    )
    with pytest.raises(LedgerValidationError):
        txns.create(payload)
    assert balance_of(session, checking.id) == 500
    assert session.scalars(select(Transaction)).all() == []


def test_unit_of_work_rolls_back_balance_when_row_write_fails() -> None:
    session = make_session()
    checking = make_account(session, "Checking", AccountType.checking, 10_000)

    with pytest.raises(PersistenceFailure):
        with unit_of_work(session):
            _adjust_balance(session, checking.id, -2_500)
            session.add(
                Transaction(
                    user_id=1,
                    account_id=checking.id,
                    amount_cents=0,
                    type=TransactionType.expense,
                    date=datetime(2024, 11, 3),
                )
            )

    assert balance_of(session, checking.id) == 10_000
    assert session.scalars(select(Transaction)).all() == []


def test_unit_of_work_propagates_non_database_errors() -> None:
    session = make_session()
    checking = make_account(session, "Checking", AccountType.checking, 10_000)

    with pytest.raises(KeyError):
        with unit_of_work(session):
            _adjust_balance(session, checking.id, 1_000)
            raise KeyError("boom")

    assert balance_of(session, checking.id) == 10_000


def test_update_truncates_date_to_milliseconds() -> None:
    session = make_session()
    checking = make_account(session, "Checking", AccountType.checking)
    txns = TransactionService(session, user_id=1)
    txn = txns.create(
        TransactionIn(
            account_id=checking.id,
            amount_cents=100,
            type=TransactionType.income,
            date=datetime(2024, 11, 3),
        )
    )
    updated = txns.update(
        txn.id, TransactionUpdateIn(date=datetime(2024, 10, 31, 23, 59, 59, 999999))
    )
    assert updated.date == datetime(2024, 10, 31, 23, 59, 59, 999000)

    october = txns.list(Period("custom", date(2024, 10, 1), date(2024, 10, 31)))
    assert [t.id for t in october] == [txn.id]


def test_explicit_user_zero_is_kept() -> None:
    session = make_session()
    assert TransactionService(session, user_id=0).user_id == 0
    assert CategoryService(session, user_id=0).user_id == 0
    assert RecurringChargeService(session, user_id=0).user_id == 0
