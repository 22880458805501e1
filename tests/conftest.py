import os
import tempfile
from datetime import time

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="hms-ledger-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_DB_DIR, "ledger.db")

from hms_ledger.app import app as flask_app, db  # noqa: E402
from hms_ledger.models import Bed, Doctor, DoctorShift, Patient  # noqa: E402
from hms_ledger.shifts import start_shift  # noqa: E402


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def patient(app):
    record = Patient(full_name="Asha Rao", phone="9800000001")
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def doctor(app):
    record = Doctor(full_name="Dr. Meera Iyer", specialization="General Surgery",
                    consultation_fee=2500, commission_rate=80)
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def doctor_roster(doctor):
    db.session.add_all([
        DoctorShift(doctor_id=doctor.doctor_id, day_of_week="Monday",
                    start_time=time(9, 0), end_time=time(17, 0), shift_type="Full Day"),
        DoctorShift(doctor_id=doctor.doctor_id, day_of_week="Wednesday",
                    start_time=time(18, 0), end_time=time(22, 0), shift_type="Evening", is_active=False),
    ])
    db.session.commit()
    return doctor


@pytest.fixture
def bed(app):
    record = Bed(bed_number="GW-101-A", daily_rate=1500)
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def open_shift(app):
    return start_shift("teller-1", 1000)
