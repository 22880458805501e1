import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select

from hms_ledger.app import db
from hms_ledger.errors import NotFoundError, ValidationError
from hms_ledger.models import Payment, PaymentMethod, ShiftStatus, UserShift
from hms_ledger.money import ZERO, to_money
from hms_ledger.store import lock_shift, transaction_scope

logger = logging.getLogger(__name__)

AUTO_CLOSE_NOTE = "Auto-closed by new shift"


@dataclass(frozen=True)
class ShiftReconciliation:
    shift_id: int
    starting_cash: Decimal
    collected_cash: Decimal
    expected_cash: Decimal
    actual_cash: Optional[Decimal]

    @property
    def discrepancy(self):
        """Counted minus expected cash; negative means the drawer is short."""
        if self.actual_cash is None:
            return None
        return self.actual_cash - self.expected_cash


def _sum_payments(session, shift_id, method=None):
    query = select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.shift_id == shift_id)
    if method is not None:
        query = query.where(Payment.payment_method == method)
    return to_money(session.execute(query).scalar_one())


def _require_user(user_id):
    if user_id is None or not str(user_id).strip():
        raise ValidationError("user_id is required")
    return str(user_id).strip()


def start_shift(user_id, starting_cash=0):
    """Open a cashier session, closing any session the user left open."""
    user_id = _require_user(user_id)
    starting_cash = to_money(starting_cash, "starting_cash")
    if starting_cash < ZERO:
        raise ValidationError("Starting cash cannot be negative")

    with transaction_scope("start_shift", user_id=user_id) as session:
        now = datetime.now()
        stale = session.execute(
            select(UserShift)
            .where(UserShift.user_id == user_id, UserShift.status == ShiftStatus.OPEN)
            .with_for_update()
        ).scalars().all()
        for old in stale:
            old.status = ShiftStatus.CLOSED
            old.end_time = now
            old.ending_cash = old.starting_cash + _sum_payments(session, old.shift_id, PaymentMethod.CASH)
            old.notes = f"{old.notes}; {AUTO_CLOSE_NOTE}" if old.notes else AUTO_CLOSE_NOTE
            logger.warning("Auto-closed shift %s for %s", old.shift_id, user_id)
        session.flush()

        shift = UserShift(user_id=user_id, start_time=now, starting_cash=starting_cash,
                          status=ShiftStatus.OPEN)
        session.add(shift)
        session.flush()

    logger.info("Opened shift %s for %s with %s starting cash", shift.shift_id, user_id, starting_cash)
    return shift


def get_current_shift(user_id):
    user_id = _require_user(user_id)
    return db.session.execute(
        select(UserShift)
        .where(UserShift.user_id == user_id, UserShift.status == ShiftStatus.OPEN)
        .order_by(UserShift.start_time.desc(), UserShift.shift_id.desc())
        .limit(1)
    ).scalar_one_or_none()


def get_shift(shift_id):
    shift = db.session.get(UserShift, shift_id)
    if shift is None:
        raise NotFoundError("Shift", shift_id)
    return shift


def list_shifts(start=None, end=None, user_id=None):
    query = select(UserShift)
    if start is not None:
        query = query.where(UserShift.start_time >= start)
    if end is not None:
        query = query.where(UserShift.start_time <= end)
    if user_id is not None:
        query = query.where(UserShift.user_id == _require_user(user_id))
    return db.session.execute(query.order_by(UserShift.start_time.desc())).scalars().all()


def close_shift(shift_id, actual_cash, notes=None):
    """Close a cashier session and record expected against counted cash.

    Expected cash is the starting float plus every Cash payment taken on the
    shift. Any difference is stored as-is for audit, never corrected.
    """
    actual_cash = to_money(actual_cash, "actual_cash")
    if actual_cash < ZERO:
        raise ValidationError("Actual cash cannot be negative")

    with transaction_scope("close_shift", shift_id=shift_id) as session:
        shift = lock_shift(session, shift_id)
        if shift is None:
            raise NotFoundError("Shift", shift_id)
        if shift.status == ShiftStatus.CLOSED:
            raise ValidationError(f"Shift {shift_id} is already closed")

        collected = _sum_payments(session, shift_id, PaymentMethod.CASH)
        starting = to_money(shift.starting_cash, "starting_cash")
        expected = starting + collected

        shift.status = ShiftStatus.CLOSED
        shift.end_time = datetime.now()
        shift.actual_cash = actual_cash
        shift.ending_cash = expected
        shift.notes = notes

    result = ShiftReconciliation(shift_id=shift_id, starting_cash=starting, collected_cash=collected,
                                 expected_cash=expected, actual_cash=actual_cash)
    if result.discrepancy:
        logger.warning("Shift %s closed with discrepancy %s (expected %s, counted %s)",
                       shift_id, result.discrepancy, expected, actual_cash)
    else:
        logger.info("Shift %s closed and balanced at %s", shift_id, expected)
    return result


def get_shift_revenue(shift_id):
    """Sum of every payment taken on a shift, whatever the method."""
    get_shift(shift_id)
    return _sum_payments(db.session, shift_id)


def get_shift_reconciliation(shift_id):
    shift = get_shift(shift_id)
    collected = _sum_payments(db.session, shift_id, PaymentMethod.CASH)
    starting = to_money(shift.starting_cash, "starting_cash")
    actual = None if shift.actual_cash is None else to_money(shift.actual_cash, "actual_cash")
    return ShiftReconciliation(shift_id=shift.shift_id, starting_cash=starting, collected_cash=collected,
                               expected_cash=starting + collected, actual_cash=actual)
