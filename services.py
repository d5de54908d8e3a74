from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import PersistenceFailure, unit_of_work
from ledger import balance_delta, net_balance_change
from metrics import (
    ExpenseMetrics,
    ExpenseMetricsComparison,
    MetricRow,
    compare_metrics,
    compute_expense_metrics,
)
from models import (
    Account,
    AccountBalanceSnapshot,
    AccountType,
    Category,
    RecurringCharge,
    Transaction,
)
from periods import (
    END_OF_DAY,
    Moment,
    MonthRange,
    Period,
    history_start,
    month_range,
    previous_month,
)
from schemas import (
    AccountIn,
    AccountUpdateIn,
    CategoryIn,
    RecurringChargeIn,
    TransactionIn,
    TransactionUpdateIn,
    type_specific_fields,
)

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return get_settings().default_user_id


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


@dataclass
class TransactionPage:
    items: list[Transaction]
    total: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance_cents: int


def _adjust_balance(session: Session, account_id: int, delta: int) -> None:
    if delta == 0:
        return
    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance_cents=Account.balance_cents + delta)
    )


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise ValueError("Account not found")
        return account

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def _name_taken(self, name: str, *, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Account.id).where(
            Account.user_id == self.user_id,
            func.lower(Account.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: AccountIn) -> Account:
        if self._name_taken(data.name):
            raise ValueError("An account with this name already exists")
        extra = {name: getattr(data, name) for name in type_specific_fields(data.type)}
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            balance_cents=data.balance_cents,
            currency=data.currency,
            **extra,
        )
        with unit_of_work(self.session):
            self.session.add(account)
        self.session.refresh(account)
        logger.info(
            f"account_created: id={account.id} type={account.type.value} "
            f"balance_cents={account.balance_cents}"
        )
        return account

    def update(self, account_id: int, data: AccountUpdateIn) -> Account:
        account = self.get(account_id)
        changes = data.model_dump(exclude_unset=True)
        allowed = set(type_specific_fields(account.type))
        if changes.get("name") is not None:
            if self._name_taken(changes["name"], exclude_id=account.id):
                raise ValueError("An account with this name already exists")
            changes["name"] = changes["name"].strip()
        if changes.get("currency") is not None:
            changes["currency"] = changes["currency"].upper()

        with unit_of_work(self.session):
            for key, value in changes.items():
                if key in ("name", "balance_cents", "currency"):
                    if value is not None:
                        setattr(account, key, value)
                elif key in allowed:
                    setattr(account, key, value)
        self.session.refresh(account)
        if "balance_cents" in changes:
            logger.info(
                f"account_balance_overwritten: id={account.id} "
                f"balance_cents={account.balance_cents}"
            )
        return account

    def delete(self, account_id: int) -> str:
        account = self.get(account_id)
        name = account.name
        related = 0
        for model in (Transaction, RecurringCharge, AccountBalanceSnapshot):
            related += int(
                self.session.execute(
                    select(func.count(model.id)).where(model.account_id == account.id)
                ).scalar_one()
                or 0
            )
        with unit_of_work(self.session):
            self.session.delete(account)
        logger.info(f"account_deleted: id={account_id} related_records={related}")
        if related:
            return f'Account "{name}" and {related} related records have been deleted.'
        return f'Account "{name}" has been deleted.'

    def summary(self) -> dict[str, list[Account]]:
        accounts = self.list_all()
        return {
            "credit_cards": [a for a in accounts if a.type == AccountType.credit_card],
            "checking": [a for a in accounts if a.type == AccountType.checking],
            "savings": [a for a in accounts if a.type == AccountType.savings],
            "loans": [a for a in accounts if a.type == AccountType.loan],
            "all": accounts,
        }

    def transactions(
        self, account_id: int, limit: int = 20, offset: int = 0
    ) -> TransactionPage:
        account = self.get(account_id)
        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.account_id == account.id
                )
            ).scalar_one()
            or 0
        )
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.account_id == account.id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        items = self.session.scalars(stmt).all()
        return TransactionPage(items=list(items), total=total, offset=offset)


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            color=data.color,
            icon=data.icon,
        )
        with unit_of_work(self.session):
            self.session.add(category)
        self.session.refresh(category)
        return category


class RecurringChargeService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def get(self, recurring_id: int) -> RecurringCharge:
        charge = self.session.get(RecurringCharge, recurring_id)
        if not charge or charge.user_id != self.user_id:
            raise ValueError("Recurring charge not found")
        return charge

    def list_all(self) -> list[RecurringCharge]:
        stmt = (
            select(RecurringCharge)
            .options(
                joinedload(RecurringCharge.account),
                joinedload(RecurringCharge.category),
            )
            .where(RecurringCharge.user_id == self.user_id)
            .order_by(RecurringCharge.next_due_date.asc(), RecurringCharge.id.asc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: RecurringChargeIn) -> RecurringCharge:
        AccountService(self.session, self.user_id).get(data.account_id)
        if data.category_id is not None:
            CategoryService(self.session, self.user_id).get(data.category_id)
        charge = RecurringCharge(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            frequency=data.frequency,
            next_due_date=data.next_due_date,
        )
        with unit_of_work(self.session):
            self.session.add(charge)
        self.session.refresh(charge)
        return charge

    def delete(self, recurring_id: int) -> None:
        charge = self.get(recurring_id)
        with unit_of_work(self.session):
            self.session.execute(
                update(Transaction)
                .where(Transaction.recurring_id == charge.id)
                .values(recurring_id=None)
            )
            self.session.delete(charge)

    def transactions(
        self, recurring_id: int, limit: int = 100, offset: int = 0
    ) -> TransactionPage:
        charge = self.get(recurring_id)
        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.recurring_id == charge.id
                )
            ).scalar_one()
            or 0
        )
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.recurring_id == charge.id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        items = self.session.scalars(stmt).all()
        return TransactionPage(items=list(items), total=total, offset=offset)


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def list(self, period: Period, limit: int = 50, offset: int = 0) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(
                    datetime.combine(period.start, time.min),
                    datetime.combine(period.end, END_OF_DAY),
                ),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def _check_references(
        self, category_id: Optional[int], recurring_id: Optional[int]
    ) -> None:
        if category_id is not None:
            CategoryService(self.session, self.user_id).get(category_id)
        if recurring_id is not None:
            RecurringChargeService(self.session, self.user_id).get(recurring_id)

    def create(self, data: TransactionIn) -> Transaction:
        account = AccountService(self.session, self.user_id).get(data.account_id)
        self._check_references(data.category_id, data.recurring_id)
        delta = balance_delta(account.type, data.type, data.amount_cents)

        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            category_id=data.category_id,
            recurring_id=data.recurring_id,
            amount_cents=data.amount_cents,
            type=data.type,
            date=data.date,
            description=data.description,
            notes=data.notes,
            is_recurring=data.is_recurring or data.recurring_id is not None,
        )
        with unit_of_work(self.session):
            self.session.add(txn)
            _adjust_balance(self.session, account.id, delta)
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} account_id={account.id} "
            f"type={txn.type.value} delta_cents={delta}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for key in ("amount_cents", "type", "date", "is_recurring"):
            if changes.get(key) is None:
                changes.pop(key, None)
        self._check_references(changes.get("category_id"), changes.get("recurring_id"))

        change = net_balance_change(
            txn.account.type,
            txn.type,
            txn.amount_cents,
            changes.get("type", txn.type),
            changes.get("amount_cents", txn.amount_cents),
        )
        account_id = txn.account_id
        with unit_of_work(self.session):
            for key, value in changes.items():
                setattr(txn, key, value)
            if changes.get("recurring_id") is not None:
                txn.is_recurring = True
            self.session.flush()
            _adjust_balance(self.session, account_id, change)
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: id={txn.id} account_id={account_id} "
            f"delta_cents={change}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        account_id = txn.account_id
        delta = balance_delta(txn.account.type, txn.type, txn.amount_cents)
        with unit_of_work(self.session):
            self.session.delete(txn)
            self.session.flush()
            _adjust_balance(self.session, account_id, -delta)
        logger.info(
            f"transaction_deleted: id={transaction_id} account_id={account_id} "
            f"delta_cents={-delta}"
        )


class MetricsService:
    """Monthly expense metrics, recomputed from the transaction table on every call."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def _rows_for(self, span: MonthRange) -> list[MetricRow]:
        stmt = (
            select(
                Transaction.type,
                Transaction.amount_cents,
                Transaction.is_recurring,
                Account.type.label("account_type"),
            )
            .join(Account, Transaction.account_id == Account.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(span.start, span.end),
            )
        )
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Failed to load transactions") from exc
        return [
            MetricRow(
                type=row.type,
                amount_cents=row.amount_cents,
                is_recurring=row.is_recurring,
                account_type=row.account_type,
            )
            for row in rows
        ]

    def monthly_expense_metrics(self, month: Moment) -> ExpenseMetrics:
        return compute_expense_metrics(self._rows_for(month_range(month)))

    def expense_metrics_with_comparison(
        self, reference: Optional[Moment] = None
    ) -> ExpenseMetricsComparison:
        reference = reference or local_now()
        current = self.monthly_expense_metrics(reference)
        previous = self.monthly_expense_metrics(previous_month(reference))
        return compare_metrics(current, previous)


class BalanceSnapshotService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def _upsert(
        self, account: Account, balance_cents: int, on: date
    ) -> AccountBalanceSnapshot:
        snapshot = self.session.scalar(
            select(AccountBalanceSnapshot).where(
                AccountBalanceSnapshot.account_id == account.id,
                AccountBalanceSnapshot.date == on,
            )
        )
        if snapshot is None:
            snapshot = AccountBalanceSnapshot(
                user_id=account.user_id,
                account_id=account.id,
                date=on,
                balance_cents=balance_cents,
            )
            self.session.add(snapshot)
        else:
            snapshot.balance_cents = balance_cents
        return snapshot

    def record(
        self,
        account_id: int,
        balance_cents: Optional[int] = None,
        on: Optional[date] = None,
    ) -> AccountBalanceSnapshot:
        account = AccountService(self.session, self.user_id).get(account_id)
        if balance_cents is None:
            balance_cents = account.balance_cents
        with unit_of_work(self.session):
            snapshot = self._upsert(account, balance_cents, on or local_today())
        self.session.refresh(snapshot)
        return snapshot

    def record_all(self, on: Optional[date] = None) -> int:
        on = on or local_today()
        accounts = AccountService(self.session, self.user_id).list_all()
        with unit_of_work(self.session):
            for account in accounts:
                self._upsert(account, account.balance_cents, on)
        return len(accounts)

    def history(
        self, account_id: int, window: str = "1M", now: Optional[datetime] = None
    ) -> list[BalancePoint]:
        account = AccountService(self.session, self.user_id).get(account_id)
        now = now or local_now()
        start = history_start(window, now, created_at=account.created_at)
        stmt = (
            select(AccountBalanceSnapshot)
            .where(
                AccountBalanceSnapshot.account_id == account.id,
                AccountBalanceSnapshot.date.between(start.date(), now.date()),
            )
            .order_by(AccountBalanceSnapshot.date.asc())
        )
        snapshots = self.session.scalars(stmt).all()
        if not snapshots:
            return [BalancePoint(date=now.date(), balance_cents=account.balance_cents)]
        return [BalancePoint(date=s.date, balance_cents=s.balance_cents) for s in snapshots]

    def combined_history(
        self,
        account_ids: Sequence[int],
        window: str = "1M",
        now: Optional[datetime] = None,
    ) -> list[BalancePoint]:
        now = now or local_now()
        start = history_start(window, now)
        stmt = (
            select(
                AccountBalanceSnapshot.date,
                func.sum(AccountBalanceSnapshot.balance_cents).label("balance_cents"),
            )
            .where(
                AccountBalanceSnapshot.user_id == self.user_id,
                AccountBalanceSnapshot.account_id.in_(list(account_ids)),
                AccountBalanceSnapshot.date.between(start.date(), now.date()),
            )
            .group_by(AccountBalanceSnapshot.date)
            .order_by(AccountBalanceSnapshot.date.asc())
        )
        return [
            BalancePoint(date=row.date, balance_cents=int(row.balance_cents))
            for row in self.session.execute(stmt).all()
        ]


def record_snapshots_for_all_users(session: Session, on: Optional[date] = None) -> int:
    user_ids = session.scalars(select(Account.user_id).distinct()).all()
    count = 0
    for user_id in user_ids:
        count += BalanceSnapshotService(session, user_id).record_all(on)
    return count
