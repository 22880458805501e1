from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from hms_ledger.errors import ValidationError
from hms_ledger.models import BillStatus

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# rounding residue at or below this is treated as fully paid
PAID_EPSILON = CENT


def to_money(value, field="amount"):
    """Coerce ``value`` to a Decimal rounded half-up to whole cents."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def derive_bill_state(total_amount, paid_amount):
    """Return ``(due_amount, status)`` for a bill's total and paid so far."""
    total = to_money(total_amount, "total_amount")
    paid = to_money(paid_amount, "paid_amount")
    due = max(total - paid, ZERO)
    if due <= PAID_EPSILON:
        return due, BillStatus.PAID
    if paid > ZERO:
        return due, BillStatus.PARTIAL
    return due, BillStatus.PENDING
