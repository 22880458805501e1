"""Clinical side effects of a settled bill.

A bill moving into Paid emits a PaymentSettled event. Handlers are tried in
registration order and the first one that claims the event ends the chain,
so an inpatient bill discharges its admission and never touches surgeries.
Handlers write through the session they are given and never commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from hms_ledger.directory import patient_display_name
from hms_ledger.models import (Admission, AdmissionStatus, Bed, BedStatus,
                               OperationStatus, PatientOperation, Role)
from hms_ledger.notifications import notify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSettled:
    bill_id: int
    patient_id: int
    admission_id: Optional[int] = None


_handlers = []


def settlement_handler(func):
    _handlers.append(func)
    return func


def registered_handlers():
    return list(_handlers)


def dispatch(event, session):
    """Run the handler chain for ``event``; return the name of the handler that fired."""
    for handler in _handlers:
        if handler(event, session):
            logger.info("Bill %s settled: %s fired", event.bill_id, handler.__name__)
            return handler.__name__
    logger.info("Bill %s settled: no linked admission or surgery", event.bill_id)
    return None


@settlement_handler
def discharge_admission(event, session):
    if event.admission_id is None:
        return False
    admission = session.get(Admission, event.admission_id, with_for_update=True, populate_existing=True)
    if admission is None:
        return False
    if admission.status == AdmissionStatus.DISCHARGED:
        return True

    admission.status = AdmissionStatus.DISCHARGED
    admission.discharge_date = datetime.now()
    bed = session.get(Bed, admission.bed_id, with_for_update=True)
    if bed is not None:
        bed.status = BedStatus.AVAILABLE

    name = patient_display_name(event.patient_id)
    notify(
        session,
        title="Patient discharged",
        message=f"{name} was discharged after bill #{event.bill_id} was paid in full. "
                f"Bed {bed.bed_number if bed is not None else admission.bed_id} is now available.",
        role=Role.ADMIN,
        patient_id=event.patient_id,
    )
    return True


@settlement_handler
def confirm_operation(event, session):
    operation = session.execute(
        select(PatientOperation)
        .where(PatientOperation.patient_id == event.patient_id,
               PatientOperation.status.in_(OperationStatus.AWAITING_DEPOSIT))
        .order_by(PatientOperation.scheduled_date, PatientOperation.operation_id)
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()
    if operation is None:
        return False

    operation.status = OperationStatus.SCHEDULED
    name = patient_display_name(event.patient_id)
    notify(
        session,
        title="Surgery confirmed",
        message=f"Deposit received for {name} (bill #{event.bill_id}). "
                f"Operation #{operation.operation_id} on {operation.scheduled_date:%Y-%m-%d %H:%M} is now scheduled.",
        role=Role.OT_STAFF,
        patient_id=event.patient_id,
    )
    return True
