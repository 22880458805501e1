"""Read-only lookups into the patient and doctor directories."""
from decimal import Decimal

from hms_ledger.app import db
from hms_ledger.models import Doctor, Patient


def patient_display_name(patient_id):
    patient = db.session.get(Patient, patient_id)
    if patient is None or not patient.full_name:
        return f"Patient #{patient_id}"
    return patient.full_name


def get_doctor(doctor_id, include_inactive=False):
    doctor = db.session.get(Doctor, doctor_id)
    if doctor is None or (not doctor.is_active and not include_inactive):
        return None
    return doctor


def doctor_commission_rate(doctor_id):
    """Commission percentage on file for a doctor, or None."""
    doctor = db.session.get(Doctor, doctor_id)
    if doctor is None or doctor.commission_rate is None:
        return None
    return Decimal(doctor.commission_rate)
