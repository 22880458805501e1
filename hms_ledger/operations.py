"""Surgery lifecycle.

    Proposed -> Recommended -> Pending Deposit | Advance Payment Requested
             -> Scheduled -> Running -> Completed (-> transferred to a ward)

Any state before Completed may move to Cancelled. Theater double-booking is
reported by find_theater_conflicts and check_schedule but not refused on
write; callers decide what to do with a conflict.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import List

from sqlalchemy import select

from hms_ledger.app import db
from hms_ledger.directory import get_doctor
from hms_ledger.errors import NotFoundError, ValidationError
from hms_ledger.models import DoctorShift, OperationStatus, PatientOperation
from hms_ledger.money import ZERO, to_money
from hms_ledger.store import require_id, transaction_scope

logger = logging.getLogger(__name__)

S = OperationStatus

ALLOWED_TRANSITIONS = {
    S.PROPOSED: {S.RECOMMENDED, S.CANCELLED},
    S.RECOMMENDED: {S.PENDING_DEPOSIT, S.ADVANCE_REQUESTED, S.CANCELLED},
    S.PENDING_DEPOSIT: {S.ADVANCE_REQUESTED, S.SCHEDULED, S.CANCELLED},
    S.ADVANCE_REQUESTED: {S.PENDING_DEPOSIT, S.SCHEDULED, S.CANCELLED},
    S.SCHEDULED: {S.RUNNING, S.CANCELLED},
    S.RUNNING: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def can_transition(current, target):
    # re-quoting at the same step keeps the status
    return current == target or target in ALLOWED_TRANSITIONS.get(current, set())


def _optional_cost(value, name):
    if value is None:
        return None
    cost = to_money(value, name)
    if cost < ZERO:
        raise ValidationError(f"{name} cannot be negative")
    return cost


def _positive_minutes(value):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"duration_minutes must be a positive integer, got {value!r}")
    return value


def create_operation(patient_id, doctor_id, scheduled_date, package_id=None, duration_minutes=60,
                     urgency=None, expected_stay_days=0, notes=None):
    require_id(patient_id, "patient_id")
    require_id(doctor_id, "doctor_id")
    _positive_minutes(duration_minutes)
    if not isinstance(scheduled_date, datetime):
        raise ValidationError("scheduled_date must be a datetime")
    if get_doctor(doctor_id) is None:
        raise NotFoundError("Doctor", doctor_id)

    with transaction_scope("create_operation", patient_id=patient_id, doctor_id=doctor_id) as session:
        operation = PatientOperation(
            patient_id=patient_id,
            doctor_id=doctor_id,
            package_id=package_id,
            status=S.PROPOSED,
            scheduled_date=scheduled_date,
            duration_minutes=duration_minutes,
            urgency=urgency,
            expected_stay_days=expected_stay_days,
            notes=notes,
        )
        session.add(operation)
        session.flush()

    logger.info("Proposed operation %s for patient %s with doctor %s",
                operation.operation_id, patient_id, doctor_id)
    return operation


def get_operation(operation_id):
    operation = db.session.get(PatientOperation, operation_id)
    if operation is None:
        raise NotFoundError("Operation", operation_id)
    return operation


def update_status_and_costs(operation_id, status, operation_cost=None, medicine_cost=None,
                            equipment_cost=None, theater_id=None, scheduled_date=None,
                            duration_minutes=None, actual_start_time=None, doctor_id=None):
    """Move an operation to ``status`` and record the agreed costs.

    Status, the three cost fields and the theater are always written as
    given, so omitting a cost clears it. Schedule, duration, actual start
    and doctor keep their stored values when omitted.
    """
    require_id(operation_id, "operation_id")
    if status not in S.ALL:
        raise ValidationError(f"Unknown operation status {status!r}")
    costs = (
        _optional_cost(operation_cost, "operation_cost"),
        _optional_cost(medicine_cost, "medicine_cost"),
        _optional_cost(equipment_cost, "equipment_cost"),
    )
    if duration_minutes is not None:
        _positive_minutes(duration_minutes)
    if doctor_id is not None:
        require_id(doctor_id, "doctor_id")
        if get_doctor(doctor_id) is None:
            raise NotFoundError("Doctor", doctor_id)

    with transaction_scope("update_operation", operation_id=operation_id) as session:
        operation = session.get(PatientOperation, operation_id, with_for_update=True, populate_existing=True)
        if operation is None:
            raise NotFoundError("Operation", operation_id)
        if not can_transition(operation.status, status):
            raise ValidationError(f"Operation {operation_id} cannot move from {operation.status} to {status}")

        previous = operation.status
        operation.status = status
        operation.agreed_operation_cost, operation.agreed_medicine_cost, operation.agreed_equipment_cost = costs
        operation.theater_id = theater_id
        if scheduled_date is not None:
            operation.scheduled_date = scheduled_date
        if duration_minutes is not None:
            operation.duration_minutes = duration_minutes
        if actual_start_time is not None:
            operation.actual_start_time = actual_start_time
        if doctor_id is not None:
            operation.doctor_id = doctor_id

    logger.info("Operation %s: %s -> %s", operation_id, previous, status)
    return operation


def mark_transferred(operation_id):
    """Flag a completed operation's patient as moved to a ward. Safe to repeat."""
    require_id(operation_id, "operation_id")
    with transaction_scope("mark_transferred", operation_id=operation_id) as session:
        operation = session.get(PatientOperation, operation_id, with_for_update=True, populate_existing=True)
        if operation is None:
            raise NotFoundError("Operation", operation_id)
        if operation.is_transferred:
            return operation
        if operation.status != S.COMPLETED:
            raise ValidationError(f"Operation {operation_id} is {operation.status}; only completed operations transfer")
        operation.is_transferred = True

    logger.info("Operation %s patient transferred to ward", operation_id)
    return operation


def get_pending_operations(limit=50):
    return db.session.execute(
        select(PatientOperation)
        .where(PatientOperation.status.in_(S.AWAITING_APPROVAL))
        .order_by(PatientOperation.scheduled_date.desc())
        .limit(limit)
    ).scalars().all()


def get_operations_ready_for_transfer(limit=50):
    return db.session.execute(
        select(PatientOperation)
        .where(PatientOperation.status == S.COMPLETED, PatientOperation.is_transferred.is_(False))
        .order_by(PatientOperation.scheduled_date.desc())
        .limit(limit)
    ).scalars().all()


def get_operations_by_theater_and_date(theater_id, on_date):
    """Scheduled or running operations booked in a theater on a calendar day."""
    if isinstance(on_date, datetime):
        on_date = on_date.date()
    day_start = datetime.combine(on_date, time.min)
    return db.session.execute(
        select(PatientOperation)
        .where(PatientOperation.theater_id == theater_id,
               PatientOperation.status.in_(S.OCCUPYING_THEATER),
               PatientOperation.scheduled_date >= day_start,
               PatientOperation.scheduled_date < day_start + timedelta(days=1))
        .order_by(PatientOperation.scheduled_date)
    ).scalars().all()


def operation_window(operation):
    start = operation.actual_start_time or operation.scheduled_date
    return start, start + timedelta(minutes=operation.duration_minutes or 0)


def find_theater_conflicts(theater_id, start, duration_minutes, exclude_operation_id=None):
    """Bookings in ``theater_id`` whose time window overlaps ``[start, start + duration)``."""
    _positive_minutes(duration_minutes)
    end = start + timedelta(minutes=duration_minutes)
    candidates = db.session.execute(
        select(PatientOperation)
        .where(PatientOperation.theater_id == theater_id,
               PatientOperation.status.in_(S.OCCUPYING_THEATER),
               PatientOperation.scheduled_date < end,
               PatientOperation.scheduled_date >= start - timedelta(days=1))
        .order_by(PatientOperation.scheduled_date)
    ).scalars().all()
    conflicts = []
    for other in candidates:
        if other.operation_id == exclude_operation_id:
            continue
        other_start, other_end = operation_window(other)
        if other_start < end and start < other_end:
            conflicts.append(other)
    return conflicts


def is_available_at_time(doctor_id, when):
    """True if an active weekly shift of the doctor covers ``when`` (bounds inclusive)."""
    moment = when.time()
    match = db.session.execute(
        select(DoctorShift.shift_id)
        .where(DoctorShift.doctor_id == doctor_id,
               DoctorShift.day_of_week == DAY_NAMES[when.weekday()],
               DoctorShift.start_time <= moment,
               DoctorShift.end_time >= moment,
               DoctorShift.is_active.is_(True))
        .limit(1)
    ).first()
    return match is not None


@dataclass
class ScheduleCheck:
    doctor_available: bool
    conflicts: List[PatientOperation] = field(default_factory=list)

    @property
    def ok(self):
        return self.doctor_available and not self.conflicts


def check_schedule(operation_id, theater_id, start, duration_minutes=None):
    """Advisory pre-check before booking an operation into a theater slot."""
    operation = get_operation(operation_id)
    duration = duration_minutes or operation.duration_minutes
    return ScheduleCheck(
        doctor_available=is_available_at_time(operation.doctor_id, start),
        conflicts=find_theater_conflicts(theater_id, start, duration, exclude_operation_id=operation_id),
    )
