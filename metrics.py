from dataclasses import asdict, dataclass
from typing import Iterable, Union

from models import AccountType, TransactionType

Number = Union[int, float]

METRIC_FIELDS = (
    "total_expenses",
    "interest_paid",
    "recurring_charges",
    "credit_card_spending",
    "loan_payments",
)


@dataclass(frozen=True)
class MetricRow:
    type: TransactionType
    amount_cents: int
    is_recurring: bool
    account_type: AccountType


@dataclass(frozen=True)
class ExpenseMetrics:
    total_expenses: int = 0
    interest_paid: int = 0
    recurring_charges: int = 0
    credit_card_spending: int = 0
    loan_payments: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ExpenseMetricsComparison(ExpenseMetrics):
    total_expenses_change: float = 0.0
    interest_paid_change: float = 0.0
    recurring_charges_change: float = 0.0
    credit_card_spending_change: float = 0.0
    loan_payments_change: float = 0.0


def percentage_change(current: Number, previous: Number) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def compute_expense_metrics(rows: Iterable[MetricRow]) -> ExpenseMetrics:
    total_expenses = 0
    interest_paid = 0
    recurring_charges = 0
    credit_card_spending = 0
    loan_payments = 0
    for row in rows:
        amount = row.amount_cents
        if row.type == TransactionType.expense:
            total_expenses += amount
            if row.is_recurring:
                recurring_charges += amount
            if row.account_type == AccountType.credit_card:
                credit_card_spending += amount
            elif row.account_type == AccountType.loan:
                loan_payments += amount
        elif row.type == TransactionType.interest_charge:
            interest_paid += amount
        elif row.type == TransactionType.loan_payment:
            loan_payments += amount
    return ExpenseMetrics(
        total_expenses=total_expenses,
        interest_paid=interest_paid,
        recurring_charges=recurring_charges,
        credit_card_spending=credit_card_spending,
        loan_payments=loan_payments,
    )


def compare_metrics(
    current: ExpenseMetrics, previous: ExpenseMetrics
) -> ExpenseMetricsComparison:
    changes = {
        f"{name}_change": percentage_change(
            getattr(current, name), getattr(previous, name)
        )
        for name in METRIC_FIELDS
    }
    return ExpenseMetricsComparison(**current.to_dict(), **changes)
