import logging
from datetime import date, datetime

from sqlalchemy import select

from hms_ledger.app import db
from hms_ledger.errors import NotFoundError, ValidationError
from hms_ledger.models import (Admission, AdmissionStatus, Bed, BedStatus, Bill,
                               BillItem, BillStatus)
from hms_ledger.money import ZERO, derive_bill_state, to_money
from hms_ledger.store import require_id, transaction_scope

logger = logging.getLogger(__name__)

ROOM_CATEGORY = "Room"


def admit_patient(patient_id, bed_id, notes=None, admission_date=None):
    require_id(patient_id, "patient_id")
    require_id(bed_id, "bed_id")
    with transaction_scope("admit_patient", patient_id=patient_id, bed_id=bed_id) as session:
        bed = session.get(Bed, bed_id, with_for_update=True, populate_existing=True)
        if bed is None or not bed.is_active:
            raise NotFoundError("Bed", bed_id)
        if bed.status != BedStatus.AVAILABLE:
            raise ValidationError(f"Bed {bed.bed_number} is {bed.status}")
        bed.status = BedStatus.OCCUPIED
        admission = Admission(patient_id=patient_id, bed_id=bed_id, status=AdmissionStatus.ADMITTED,
                              admission_date=admission_date or datetime.now(), notes=notes)
        session.add(admission)
        session.flush()

    logger.info("Admitted patient %s to bed %s (admission %s)", patient_id, bed_id, admission.admission_id)
    return admission


def discharge_patient(admission_id):
    """Discharge from the ward directly; the bed goes to cleaning before reuse."""
    require_id(admission_id, "admission_id")
    with transaction_scope("discharge_patient", admission_id=admission_id) as session:
        admission = session.get(Admission, admission_id, with_for_update=True, populate_existing=True)
        if admission is None:
            raise NotFoundError("Admission", admission_id)
        if admission.status == AdmissionStatus.DISCHARGED:
            return admission
        admission.status = AdmissionStatus.DISCHARGED
        admission.discharge_date = datetime.now()
        bed = session.get(Bed, admission.bed_id, with_for_update=True)
        if bed is not None:
            bed.status = BedStatus.CLEANING

    logger.info("Discharged admission %s", admission_id)
    return admission


def accrue_daily_room_charges(on_date=None):
    """Add one day of room rent to every open bill of an admitted patient.

    Runs once per day; a bill that already carries the rent line for
    ``on_date`` is skipped. Returns the number of bills charged.
    """
    on_date = on_date or date.today()
    description = f"Daily Room Rent - {on_date.isoformat()}"
    charged = 0

    with transaction_scope("accrue_daily_room_charges", on_date=on_date.isoformat()) as session:
        rows = session.execute(
            select(Bill, Bed.daily_rate)
            .join(Admission, Bill.admission_id == Admission.admission_id)
            .join(Bed, Admission.bed_id == Bed.bed_id)
            .where(Admission.status == AdmissionStatus.ADMITTED,
                   Bill.status.in_(BillStatus.OUTSTANDING))
            .order_by(Bill.bill_id)
            .with_for_update(of=Bill)
        ).all()
        for bill, daily_rate in rows:
            rate = to_money(daily_rate or 0, "daily_rate")
            if rate <= ZERO:
                continue
            already = session.execute(
                select(BillItem.bill_item_id)
                .where(BillItem.bill_id == bill.bill_id, BillItem.description == description)
                .limit(1)
            ).first()
            if already is not None:
                continue
            bill.items.append(BillItem(description=description, amount=rate, category=ROOM_CATEGORY))
            bill.total_amount = to_money(bill.total_amount, "total_amount") + rate
            bill.due_amount, bill.status = derive_bill_state(bill.total_amount, bill.paid_amount)
            charged += 1

    logger.info("Room rent accrual for %s: %d bills charged", on_date, charged)
    return charged


def get_active_admissions(limit=100):
    return db.session.execute(
        select(Admission)
        .where(Admission.status == AdmissionStatus.ADMITTED)
        .order_by(Admission.admission_date.desc())
        .limit(limit)
    ).scalars().all()
