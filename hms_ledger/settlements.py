import logging
from datetime import date, datetime, time

from sqlalchemy import func, select

from hms_ledger.app import db
from hms_ledger.directory import doctor_commission_rate, get_doctor
from hms_ledger.errors import NotFoundError, ValidationError
from hms_ledger.models import Appointment, AppointmentStatus, Doctor, DoctorPayment
from hms_ledger.money import ZERO, to_money
from hms_ledger.store import require_id, transaction_scope

logger = logging.getLogger(__name__)


def _period_bounds(period_start, period_end):
    # whole days are inclusive at both ends
    if not isinstance(period_start, datetime) and isinstance(period_start, date):
        period_start = datetime.combine(period_start, time.min)
    if not isinstance(period_end, datetime) and isinstance(period_end, date):
        period_end = datetime.combine(period_end, time.max)
    if not isinstance(period_start, datetime) or not isinstance(period_end, datetime):
        raise ValidationError("Settlement period bounds must be dates or datetimes")
    if period_start > period_end:
        raise ValidationError("Settlement period starts after it ends")
    return period_start, period_end


def completed_consultation_fees(doctor_id, period_start, period_end):
    start, end = _period_bounds(period_start, period_end)
    fees = db.session.execute(
        select(func.coalesce(func.sum(Doctor.consultation_fee), 0))
        .select_from(Appointment)
        .join(Doctor, Appointment.doctor_id == Doctor.doctor_id)
        .where(Appointment.doctor_id == doctor_id,
               Appointment.status == AppointmentStatus.COMPLETED,
               Appointment.appointment_date >= start,
               Appointment.appointment_date <= end)
    ).scalar_one()
    return to_money(fees, "consultation_fees")


def calculate_doctor_settlement(doctor_id, period_start, period_end):
    """Commission owed to a doctor for completed appointments in the period."""
    rate = doctor_commission_rate(doctor_id)
    if rate is None:
        return ZERO
    fees = completed_consultation_fees(doctor_id, period_start, period_end)
    return to_money(fees * rate / 100, "settlement")


def process_doctor_payment(doctor_id, amount, period_start, period_end, notes=None, status="Processed"):
    require_id(doctor_id, "doctor_id")
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Doctor payment amount must be greater than zero")
    start, end = _period_bounds(period_start, period_end)
    if get_doctor(doctor_id, include_inactive=True) is None:
        raise NotFoundError("Doctor", doctor_id)

    with transaction_scope("process_doctor_payment", doctor_id=doctor_id) as session:
        payout = DoctorPayment(doctor_id=doctor_id, amount=amount, payment_date=datetime.now(),
                               period_start=start, period_end=end, status=status, notes=notes)
        session.add(payout)
        session.flush()

    logger.info("Recorded payout %s of %s to doctor %s for %s..%s",
                payout.payment_id, amount, doctor_id, start.date(), end.date())
    return payout


def get_doctor_payments(doctor_id):
    return db.session.execute(
        select(DoctorPayment)
        .where(DoctorPayment.doctor_id == doctor_id)
        .order_by(DoctorPayment.payment_date.desc(), DoctorPayment.payment_id.desc())
    ).scalars().all()
