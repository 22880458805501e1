from datetime import datetime

from hms_ledger.admissions import admit_patient
from hms_ledger.app import db
from hms_ledger.models import Appointment, AppointmentStatus


def post_bill(client, patient_id, **extra):
    body = {'patientId': patient_id, 'items': [
        {'description': 'Consultation', 'amount': '600.00', 'category': 'Doctor'},
        {'description': 'Lab panel', 'amount': '400.00', 'category': 'Lab'},
    ]}
    body.update(extra)
    return client.post('/bills', json=body)


def test_bill_and_payment_flow(client, patient, open_shift):
    response = post_bill(client, patient.patient_id, createdBy='teller-1')
    assert response.status_code == 201
    bill = response.get_json()['bill']
    assert bill['total_amount'] == '1000.00'
    assert bill['due_amount'] == '1000.00'
    assert bill['status'] == 'Pending'
    assert [item['category'] for item in bill['items']] == ['Doctor', 'Lab']

    response = client.post(f"/bills/{bill['bill_id']}/payments", json={
        'amount': 1000, 'method': 'Cash', 'shiftId': open_shift.shift_id, 'tellerId': 'teller-1',
    })
    assert response.status_code == 201
    data = response.get_json()
    assert data['new_status'] == 'Paid'
    assert data['due_amount'] == '0.00'

    listed = client.get('/bills?status=Paid').get_json()['bills']
    assert [b['bill_id'] for b in listed] == [bill['bill_id']]
    assert listed[0]['payments'][0]['method'] == 'Cash'


def test_error_mapping(client, patient, open_shift):
    assert client.post('/bills', data='not json').status_code == 400
    assert post_bill(client, -1).status_code == 400
    assert client.get('/bills/999').status_code == 404
    assert client.get('/bills?sort=TotalAmount').status_code == 400

    response = client.post('/bills/999/payments', json={
        'amount': 10, 'method': 'Cash', 'shiftId': open_shift.shift_id, 'tellerId': 'teller-1',
    })
    assert response.status_code == 404
    assert response.get_json() == {'success': False, 'message': 'Bill 999 not found'}


def test_shift_routes(client, patient):
    response = client.post('/shifts/start', json={'userId': 'A', 'startingCash': 1000})
    assert response.status_code == 201
    shift_id = response.get_json()['shift']['shift_id']

    bill_id = post_bill(client, patient.patient_id).get_json()['bill']['bill_id']
    for amount, method in [(300, 'Cash'), (200, 'Cash'), (500, 'Card')]:
        client.post(f'/bills/{bill_id}/payments', json={
            'amount': amount, 'method': method, 'shiftId': shift_id, 'tellerId': 'A',
        })

    assert client.get(f'/shifts/{shift_id}/revenue').get_json()['revenue'] == '1000.00'
    assert client.get('/shifts/current/A').get_json()['shift']['shift_id'] == shift_id

    closed = client.post(f'/shifts/{shift_id}/close', json={'actualCash': 1490}).get_json()
    assert closed['expected_cash'] == '1500.00'
    assert closed['discrepancy'] == '-10.00'
    assert client.get('/shifts/current/A').get_json()['shift'] is None
    assert client.post(f'/shifts/{shift_id}/close', json={'actualCash': 0}).status_code == 400


def test_operation_routes(client, patient, doctor_roster):
    response = client.post('/operations', json={
        'patientId': patient.patient_id, 'doctorId': doctor_roster.doctor_id,
        'scheduledDate': '2024-01-01T10:00:00', 'durationMinutes': 120, 'urgency': 'High',
    })
    assert response.status_code == 201
    operation_id = response.get_json()['operation']['operation_id']

    for status in ('Recommended', 'Pending Deposit', 'Scheduled'):
        response = client.post(f'/operations/{operation_id}/status', json={
            'status': status, 'operationCost': '40000', 'theaterId': 4,
        })
        assert response.status_code == 200
    assert response.get_json()['operation']['agreed_operation_cost'] == '40000.00'

    skip = client.post(f'/operations/{operation_id}/status', json={'status': 'Completed', 'theaterId': 4})
    assert skip.status_code == 400
    assert client.post(f'/operations/{operation_id}/transfer').status_code == 400

    booked = client.get('/theaters/4/operations?date=2024-01-01').get_json()['operations']
    assert [op['operation_id'] for op in booked] == [operation_id]

    at = client.get(f'/doctors/{doctor_roster.doctor_id}/availability?at=2024-01-01T12:00:00').get_json()
    assert at['available'] is True


def test_settlement_routes(client, doctor):
    db.session.add_all([
        Appointment(patient_id=1, doctor_id=doctor.doctor_id, appointment_date=datetime(2024, 1, day, 22, 0),
                    status=AppointmentStatus.COMPLETED)
        for day in (2, 31)
    ])
    db.session.commit()

    data = client.get(f'/doctors/{doctor.doctor_id}/settlement?start=2024-01-01&end=2024-01-31').get_json()
    assert data['settlement'] == '4000.00'

    response = client.post(f'/doctors/{doctor.doctor_id}/payments', json={
        'amount': '4000.00', 'periodStart': '2024-01-01', 'periodEnd': '2024-01-31',
    })
    assert response.status_code == 201
    assert response.get_json()['amount'] == '4000.00'


def test_accrue_room_charges_command(app, patient, bed):
    admission = admit_patient(patient.patient_id, bed.bed_id)
    client = app.test_client()
    post_bill(client, patient.patient_id, admissionId=admission.admission_id)

    result = app.test_cli_runner().invoke(args=['accrue-room-charges', '--date', '2024-03-01'])

    assert result.exit_code == 0
    assert '1 bills charged' in result.output


def test_admin_inbox(client, patient, bed, open_shift):
    admission = admit_patient(patient.patient_id, bed.bed_id)
    bill_id = post_bill(client, patient.patient_id, admissionId=admission.admission_id).get_json()['bill']['bill_id']
    client.post(f'/bills/{bill_id}/payments', json={
        'amount': 1000, 'method': 'Card', 'shiftId': open_shift.shift_id, 'tellerId': 'teller-1',
    })

    inbox = client.get('/notifications/Admin?unread=1').get_json()['notifications']
    assert [n['title'] for n in inbox] == ['Patient discharged']

    assert client.post('/notifications/Admin/read').get_json()['marked'] == 1
    assert client.get('/notifications/Admin?unread=1').get_json()['notifications'] == []
    assert client.get('/notifications/Admin').get_json()['notifications'][0]['is_read'] is True
