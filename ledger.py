"""Signed balance effect of a transaction on its owning account.

Amounts are always positive; direction comes from the pair of account type and
transaction type. For credit cards and loans the stored balance is the amount
owed, so spending raises it and payments lower it.
"""

from models import AccountType, TransactionType


class LedgerValidationError(ValueError):
    pass


_INCREASE = 1
_DECREASE = -1
_NO_EFFECT = 0

_DEBT_RULES = {
    TransactionType.expense: _INCREASE,
    TransactionType.interest_charge: _INCREASE,
    TransactionType.income: _DECREASE,
    TransactionType.loan_payment: _DECREASE,
    # TODO: move money between the two accounts once transfers carry a counterparty.
    TransactionType.transfer: _NO_EFFECT,
}

_DEPOSITORY_RULES = {
    TransactionType.income: _INCREASE,
    TransactionType.expense: _DECREASE,
    TransactionType.transfer: _NO_EFFECT,
    TransactionType.interest_charge: _NO_EFFECT,
    TransactionType.loan_payment: _NO_EFFECT,
}

BALANCE_RULES: dict[tuple[AccountType, TransactionType], int] = {
    **{(AccountType.credit_card, t): sign for t, sign in _DEBT_RULES.items()},
    **{(AccountType.loan, t): sign for t, sign in _DEBT_RULES.items()},
    **{(AccountType.checking, t): sign for t, sign in _DEPOSITORY_RULES.items()},
    **{(AccountType.savings, t): sign for t, sign in _DEPOSITORY_RULES.items()},
}


def _coerce(account_type, transaction_type) -> tuple[AccountType, TransactionType]:
    try:
        return AccountType(account_type), TransactionType(transaction_type)
    except ValueError as exc:
        raise LedgerValidationError(str(exc)) from exc


def balance_delta(account_type, transaction_type, amount_cents: int) -> int:
    account_type, transaction_type = _coerce(account_type, transaction_type)
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise LedgerValidationError("Amount must be a whole number of cents")
    if amount_cents <= 0:
        raise LedgerValidationError("Amount must be positive")
    try:
        sign = BALANCE_RULES[(account_type, transaction_type)]
    except KeyError:
        raise LedgerValidationError(
            f"No balance rule for {transaction_type.value} on {account_type.value}"
        ) from None
    return sign * amount_cents


def net_balance_change(
    account_type,
    old_type,
    old_amount_cents: int,
    new_type,
    new_amount_cents: int,
) -> int:
    """Delta that replaces the effect of the old values with the new ones."""
    old = balance_delta(account_type, old_type, old_amount_cents)
    new = balance_delta(account_type, new_type, new_amount_cents)
    return new - old
