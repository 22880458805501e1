from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from hms_ledger import automation, notifications
from hms_ledger.admissions import admit_patient
from hms_ledger.app import db
from hms_ledger.automation import PaymentSettled, dispatch, registered_handlers
from hms_ledger.errors import TransactionFailure
from hms_ledger.invoices import create_bill, get_bill
from hms_ledger.models import (Admission, AdmissionStatus, Bed, BedStatus, BillStatus,
                               Notification, OperationStatus, PatientOperation, PaymentMethod, Role)
from hms_ledger.notifications import get_notifications_for_role
from hms_ledger.operations import create_operation, update_status_and_costs
from hms_ledger.payments import add_payment, get_payments
from hms_ledger.store import transaction_scope


def pay(bill_id, shift, amount):
    return add_payment(bill_id, amount, PaymentMethod.CASH, shift.shift_id, "teller-1")


@pytest.fixture
def admission(patient, bed):
    return admit_patient(patient.patient_id, bed.bed_id)


@pytest.fixture
def awaiting_deposit(patient, doctor):
    operation = create_operation(patient.patient_id, doctor.doctor_id, datetime(2024, 1, 1, 10, 0))
    update_status_and_costs(operation.operation_id, OperationStatus.RECOMMENDED, operation_cost=40000)
    update_status_and_costs(operation.operation_id, OperationStatus.PENDING_DEPOSIT,
                            operation_cost=40000, medicine_cost=5000)
    return operation


def test_handler_order():
    assert [h.__name__ for h in registered_handlers()] == ["discharge_admission", "confirm_operation"]


def test_paid_inpatient_bill_discharges_and_frees_bed(patient, bed, admission, open_shift):
    bill_id = create_bill(patient.patient_id, total_amount="1000.00", admission_id=admission.admission_id)

    pay(bill_id, open_shift, "1000.00")

    assert get_bill(bill_id).status == BillStatus.PAID
    stored = db.session.get(Admission, admission.admission_id)
    assert stored.status == AdmissionStatus.DISCHARGED
    assert stored.discharge_date is not None
    assert db.session.get(Bed, bed.bed_id).status == BedStatus.AVAILABLE

    notes = get_notifications_for_role(Role.ADMIN)
    assert len(notes) == 1
    assert notes[0].title == "Patient discharged"
    assert "Asha Rao" in notes[0].message
    assert notes[0].patient_id == patient.patient_id


def test_deposit_paid_confirms_surgery(patient, awaiting_deposit, open_shift):
    bill_id = create_bill(patient.patient_id, total_amount="45000.00")

    pay(bill_id, open_shift, "45000.00")

    operation = db.session.get(PatientOperation, awaiting_deposit.operation_id)
    assert operation.status == OperationStatus.SCHEDULED
    notes = get_notifications_for_role(Role.OT_STAFF)
    assert [n.title for n in notes] == ["Surgery confirmed"]
    assert get_notifications_for_role(Role.ADMIN) == []


def test_admission_takes_precedence_over_surgery(patient, admission, awaiting_deposit, open_shift):
    bill_id = create_bill(patient.patient_id, total_amount=300, admission_id=admission.admission_id)

    pay(bill_id, open_shift, 300)

    assert db.session.get(Admission, admission.admission_id).status == AdmissionStatus.DISCHARGED
    operation = db.session.get(PatientOperation, awaiting_deposit.operation_id)
    assert operation.status == OperationStatus.PENDING_DEPOSIT
    assert get_notifications_for_role(Role.OT_STAFF) == []


def test_only_the_transition_into_paid_triggers(patient, doctor, open_shift):
    bill_id = create_bill(patient.patient_id, total_amount=100)
    pay(bill_id, open_shift, 100)

    later = create_operation(patient.patient_id, doctor.doctor_id, datetime(2024, 2, 5, 9, 0))
    update_status_and_costs(later.operation_id, OperationStatus.RECOMMENDED)
    update_status_and_costs(later.operation_id, OperationStatus.ADVANCE_REQUESTED)

    pay(bill_id, open_shift, 50)

    bill = get_bill(bill_id)
    assert bill.paid_amount == Decimal("150.00")
    assert bill.due_amount == Decimal("0.00")
    assert db.session.get(PatientOperation, later.operation_id).status == OperationStatus.ADVANCE_REQUESTED


def test_discharge_handler_is_idempotent(patient, admission, open_shift):
    bill_id = create_bill(patient.patient_id, total_amount=100, admission_id=admission.admission_id)
    pay(bill_id, open_shift, 100)
    event = PaymentSettled(bill_id=bill_id, patient_id=patient.patient_id,
                           admission_id=admission.admission_id)

    with transaction_scope("replay") as session:
        fired = dispatch(event, session)

    assert fired == "discharge_admission"
    assert Notification.query.count() == 1


def test_no_linked_work_means_no_handler(patient, app):
    with transaction_scope("replay") as session:
        assert dispatch(PaymentSettled(bill_id=1, patient_id=patient.patient_id), session) is None


def test_failed_handler_rolls_back_the_payment(patient, admission, open_shift, monkeypatch):
    bill_id = create_bill(patient.patient_id, total_amount=100, admission_id=admission.admission_id)

    def broken(event, session):
        raise OperationalError("UPDATE Admissions", {}, Exception("database is locked"))

    monkeypatch.setattr(automation, "_handlers", [broken])
    with pytest.raises(TransactionFailure):
        pay(bill_id, open_shift, 100)

    db.session.expire_all()
    assert get_payments(bill_id) == []
    assert get_bill(bill_id).status == BillStatus.PENDING


def test_notification_failure_keeps_the_payment(patient, bed, admission, open_shift, monkeypatch):
    monkeypatch.setattr(notifications, "Notification",
                        lambda **kw: Notification(**{**kw, "title": None}))
    bill_id = create_bill(patient.patient_id, total_amount=100, admission_id=admission.admission_id)

    pay(bill_id, open_shift, 100)

    db.session.expire_all()
    assert get_bill(bill_id).status == BillStatus.PAID
    assert db.session.get(Admission, admission.admission_id).status == AdmissionStatus.DISCHARGED
    assert db.session.get(Bed, bed.bed_id).status == BedStatus.AVAILABLE
    assert Notification.query.count() == 0
