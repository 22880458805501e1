import logging
from datetime import datetime

from sqlalchemy import func, select

from hms_ledger.app import db
from hms_ledger.automation import PaymentSettled, dispatch
from hms_ledger.errors import NotFoundError, ValidationError
from hms_ledger.models import BillStatus, Payment, PaymentMethod, ShiftStatus
from hms_ledger.money import ZERO, derive_bill_state, to_money
from hms_ledger.store import lock_bill, lock_shift, require_id, transaction_scope

logger = logging.getLogger(__name__)


def total_paid(session, bill_id):
    paid = session.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.bill_id == bill_id)
    ).scalar_one()
    return to_money(paid, "paid_amount")


def _require_open(shift):
    if shift.status != ShiftStatus.OPEN:
        raise ValidationError(f"Shift {shift.shift_id} is closed; open a new shift to take payments")


def add_payment(bill_id, amount, method, shift_id, teller_id,
                reference_number=None, remarks=None, payment_date=None):
    """Record a payment and bring the bill's paid/due/status up to date.

    The payment row, the recomputed bill aggregates and any automation
    triggered by the bill becoming fully paid commit together or not at all.
    Returns the stored Payment.
    """
    require_id(bill_id, "bill_id")
    require_id(shift_id, "shift_id")
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than zero")
    if method not in PaymentMethod.ALL:
        raise ValidationError(f"Unknown payment method {method!r}")
    if not teller_id or not str(teller_id).strip():
        raise ValidationError("teller_id is required")

    with transaction_scope("add_payment", bill_id=bill_id, shift_id=shift_id) as session:
        bill = lock_bill(session, bill_id)
        if bill is None:
            raise NotFoundError("Bill", bill_id)
        shift = lock_shift(session, shift_id)
        if shift is None:
            raise NotFoundError("Shift", shift_id)
        _require_open(shift)

        previous_status = bill.status
        payment = Payment(
            bill_id=bill.bill_id,
            amount=amount,
            payment_method=method,
            payment_date=payment_date or datetime.now(),
            reference_number=reference_number,
            teller_id=str(teller_id),
            shift_id=shift_id,
            remarks=remarks,
        )
        session.add(payment)
        session.flush()
        # re-read now that the payment row holds the write lock
        _require_open(lock_shift(session, shift_id))

        paid =total_paid(session, bill.bill_id)
        due, status = derive_bill_state(bill.total_amount, paid)
        bill.paid_amount = paid
        bill.due_amount = due
        bill.status = status
        session.flush()

        if status == BillStatus.PAID and previous_status != BillStatus.PAID:
            dispatch(PaymentSettled(bill_id=bill.bill_id, patient_id=bill.patient_id,
                                    admission_id=bill.admission_id), session)

    logger.info("Payment %s of %s (%s) on bill %s: paid=%s due=%s status=%s",
                payment.payment_id, amount, method, bill_id, paid, due, status)
    return payment


def get_payments(bill_id):
    return db.session.execute(
        select(Payment).where(Payment.bill_id == bill_id).order_by(Payment.payment_id)
    ).scalars().all()
