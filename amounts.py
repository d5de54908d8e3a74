from decimal import Decimal, InvalidOperation
from typing import Optional


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    """Parse a user-entered money string ("1,234.50", "$12", "-3.1") into cents."""
    clean = value.strip().replace("$", "").replace("€", "").replace(" ", "")
    clean = clean.replace(",", "")
    if not clean:
        raise ValueError("Amount is required")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def parse_optional_amount(
    value: Optional[str], *, allow_negative: bool = False
) -> Optional[int]:
    if value is None or not str(value).strip():
        return None
    return parse_amount(str(value), allow_negative=allow_negative)


def format_currency(cents: int, currency: str = "USD") -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}{abs(cents) / 100:,.2f} {currency}"
