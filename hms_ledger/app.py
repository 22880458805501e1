import os
import logging
from datetime import datetime

import click
from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase

from hms_ledger.errors import NotFoundError, TransactionFailure, ValidationError

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)
app = Flask(__name__)

# Database configuration
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///hms_ledger.db")
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
    "pool_recycle": 300,
    "pool_pre_ping": True,
}
app.secret_key = os.environ.get("SESSION_SECRET", "hms-ledger-dev-secret")

# Initialize database
db.init_app(app)


def _money(value):
    return None if value is None else str(value)


def _timestamp(value):
    return None if value is None else value.isoformat()


def _parse_datetime(value, field):
    if value in (None, ''):
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO date/time, got {value!r}")


def _parse_period_bound(value, field):
    # a bare YYYY-MM-DD covers the whole day
    if isinstance(value, str) and len(value) == 10:
        return _parse_datetime(value, field).date()
    return _parse_datetime(value, field)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _error_response(exc):
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, TransactionFailure):
        status = 409
    else:
        logging.error(f"Unexpected error handling {request.path}: {exc}")
        return jsonify({'success': False, 'message': 'Internal server error'}), 500
    logging.error(f"{request.method} {request.path} failed: {exc}")
    return jsonify({'success': False, 'message': str(exc)}), status


def _bill_payload(bill):
    return {
        'bill_id': bill.bill_id,
        'patient_id': bill.patient_id,
        'total_amount': _money(bill.total_amount),
        'paid_amount': _money(bill.paid_amount),
        'due_amount': _money(bill.due_amount),
        'status': bill.status,
        'bill_date': _timestamp(bill.bill_date),
        'shift_id': bill.shift_id,
        'created_by': bill.created_by,
        'admission_id': bill.admission_id,
        'items': [{
            'description': item.description,
            'amount': _money(item.amount),
            'category': item.category
        } for item in bill.items],
        'payments': [_payment_payload(payment) for payment in bill.payments],
    }


def _payment_payload(payment):
    return {
        'payment_id': payment.payment_id,
        'bill_id': payment.bill_id,
        'amount': _money(payment.amount),
        'method': payment.payment_method,
        'payment_date': _timestamp(payment.payment_date),
        'reference_number': payment.reference_number,
        'teller_id': payment.teller_id,
        'shift_id': payment.shift_id,
        'remarks': payment.remarks,
    }


def _shift_payload(shift):
    return {
        'shift_id': shift.shift_id,
        'user_id': shift.user_id,
        'status': shift.status,
        'start_time': _timestamp(shift.start_time),
        'end_time': _timestamp(shift.end_time),
        'starting_cash': _money(shift.starting_cash),
        'ending_cash': _money(shift.ending_cash),
        'actual_cash': _money(shift.actual_cash),
        'notes': shift.notes,
    }


def _operation_payload(operation):
    return {
        'operation_id': operation.operation_id,
        'patient_id': operation.patient_id,
        'doctor_id': operation.doctor_id,
        'package_id': operation.package_id,
        'theater_id': operation.theater_id,
        'status': operation.status,
        'scheduled_date': _timestamp(operation.scheduled_date),
        'duration_minutes': operation.duration_minutes,
        'actual_start_time': _timestamp(operation.actual_start_time),
        'agreed_operation_cost': _money(operation.agreed_operation_cost),
        'agreed_medicine_cost': _money(operation.agreed_medicine_cost),
        'agreed_equipment_cost': _money(operation.agreed_equipment_cost),
        'is_transferred': operation.is_transferred,
    }


@app.route('/bills', methods=['POST'])
def create_bill():
    try:
        from hms_ledger.invoices import create_bill as create, get_bill
        bill_data = _json_body()
        bill_id = create(
            patient_id=bill_data.get('patientId'),
            items=bill_data.get('items', []),
            total_amount=bill_data.get('totalAmount'),
            paid_amount=bill_data.get('paidAmount', 0),
            shift_id=bill_data.get('shiftId'),
            created_by=bill_data.get('createdBy'),
            admission_id=bill_data.get('admissionId'),
        )
        return jsonify({
            'success': True,
            'message': 'Bill generated successfully',
            'bill': _bill_payload(get_bill(bill_id))
        }), 201
    except Exception as e:
        return _error_response(e)


@app.route('/bills')
def view_bills():
    try:
        from hms_ledger.invoices import list_bills
        patient_id = request.args.get('patient_id', type=int)
        bills = list_bills(
            status=request.args.get('status') or None,
            patient_id=patient_id,
            sort=request.args.get('sort', 'newest'),
        )
        return jsonify({'success': True, 'bills': [_bill_payload(bill) for bill in bills]})
    except Exception as e:
        return _error_response(e)


@app.route('/bills/<int:bill_id>')
def view_bill(bill_id):
    try:
        from hms_ledger.invoices import get_bill
        return jsonify({'success': True, 'bill': _bill_payload(get_bill(bill_id))})
    except Exception as e:
        return _error_response(e)


@app.route('/bills/<int:bill_id>/payments', methods=['POST'])
def add_payment(bill_id):
    try:
        from hms_ledger.invoices import get_bill
        from hms_ledger.payments import add_payment as record
        data = _json_body()
        payment = record(
            bill_id=bill_id,
            amount=data.get('amount'),
            method=data.get('method'),
            shift_id=data.get('shiftId'),
            teller_id=data.get('tellerId'),
            reference_number=data.get('referenceNumber'),
            remarks=data.get('remarks'),
        )
        bill = get_bill(bill_id)
        return jsonify({
            'success': True,
            'payment': _payment_payload(payment),
            'new_status': bill.status,
            'due_amount': _money(bill.due_amount)
        }), 201
    except Exception as e:
        return _error_response(e)


@app.route('/shifts/start', methods=['POST'])
def start_shift():
    try:
        from hms_ledger.shifts import start_shift as start
        data = _json_body()
        shift = start(data.get('userId'), data.get('startingCash', 0))
        return jsonify({'success': True, 'shift': _shift_payload(shift)}), 201
    except Exception as e:
        return _error_response(e)


@app.route('/shifts/current/<user_id>')
def current_shift(user_id):
    try:
        from hms_ledger.shifts import get_current_shift
        shift = get_current_shift(user_id)
        return jsonify({'success': True, 'shift': _shift_payload(shift) if shift else None})
    except Exception as e:
        return _error_response(e)


@app.route('/shifts/<int:shift_id>/close', methods=['POST'])
def close_shift(shift_id):
    try:
        from hms_ledger.shifts import close_shift as close
        data = _json_body()
        result = close(shift_id, data.get('actualCash'), data.get('notes'))
        return jsonify({
            'success': True,
            'shift_id': result.shift_id,
            'starting_cash': _money(result.starting_cash),
            'collected_cash': _money(result.collected_cash),
            'expected_cash': _money(result.expected_cash),
            'actual_cash': _money(result.actual_cash),
            'discrepancy': _money(result.discrepancy)
        })
    except Exception as e:
        return _error_response(e)


@app.route('/shifts/<int:shift_id>/revenue')
def shift_revenue(shift_id):
    try:
        from hms_ledger.shifts import get_shift_revenue
        return jsonify({'success': True, 'shift_id': shift_id, 'revenue': _money(get_shift_revenue(shift_id))})
    except Exception as e:
        return _error_response(e)


@app.route('/operations', methods=['POST'])
def create_operation():
    try:
        from hms_ledger.operations import create_operation as create
        data = _json_body()
        scheduled = _parse_datetime(data.get('scheduledDate'), 'scheduledDate')
        if scheduled is None:
            raise ValidationError("scheduledDate is required")
        operation = create(
            patient_id=data.get('patientId'),
            doctor_id=data.get('doctorId'),
            scheduled_date=scheduled,
            package_id=data.get('packageId'),
            duration_minutes=data.get('durationMinutes', 60),
            urgency=data.get('urgency'),
            notes=data.get('notes'),
        )
        return jsonify({'success': True, 'operation': _operation_payload(operation)}), 201
    except Exception as e:
        return _error_response(e)


@app.route('/operations/<int:operation_id>/status', methods=['POST'])
def update_operation(operation_id):
    try:
        from hms_ledger.operations import update_status_and_costs
        data = _json_body()
        operation = update_status_and_costs(
            operation_id,
            data.get('status'),
            operation_cost=data.get('operationCost'),
            medicine_cost=data.get('medicineCost'),
            equipment_cost=data.get('equipmentCost'),
            theater_id=data.get('theaterId'),
            scheduled_date=_parse_datetime(data.get('scheduledDate'), 'scheduledDate'),
            duration_minutes=data.get('durationMinutes'),
            actual_start_time=_parse_datetime(data.get('actualStartTime'), 'actualStartTime'),
            doctor_id=data.get('doctorId'),
        )
        return jsonify({'success': True, 'operation': _operation_payload(operation)})
    except Exception as e:
        return _error_response(e)


@app.route('/operations/<int:operation_id>/transfer', methods=['POST'])
def transfer_operation(operation_id):
    try:
        from hms_ledger.operations import mark_transferred
        return jsonify({'success': True, 'operation': _operation_payload(mark_transferred(operation_id))})
    except Exception as e:
        return _error_response(e)


@app.route('/theaters/<int:theater_id>/operations')
def theater_operations(theater_id):
    try:
        from hms_ledger.operations import get_operations_by_theater_and_date
        on_date = _parse_datetime(request.args.get('date'), 'date')
        if on_date is None:
            raise ValidationError("date is required")
        operations = get_operations_by_theater_and_date(theater_id, on_date)
        return jsonify({'success': True, 'operations': [_operation_payload(op) for op in operations]})
    except Exception as e:
        return _error_response(e)


@app.route('/doctors/<int:doctor_id>/availability')
def doctor_availability(doctor_id):
    try:
        from hms_ledger.operations import is_available_at_time
        when = _parse_datetime(request.args.get('at'), 'at')
        if when is None:
            raise ValidationError("at is required")
        return jsonify({'success': True, 'doctor_id': doctor_id, 'available': is_available_at_time(doctor_id, when)})
    except Exception as e:
        return _error_response(e)


@app.route('/doctors/<int:doctor_id>/settlement')
def doctor_settlement(doctor_id):
    try:
        from hms_ledger.settlements import calculate_doctor_settlement
        start = _parse_period_bound(request.args.get('start'), 'start')
        end = _parse_period_bound(request.args.get('end'), 'end')
        amount = calculate_doctor_settlement(doctor_id, start, end)
        return jsonify({'success': True, 'doctor_id': doctor_id, 'settlement': _money(amount)})
    except Exception as e:
        return _error_response(e)


@app.route('/doctors/<int:doctor_id>/payments', methods=['POST'])
def pay_doctor(doctor_id):
    try:
        from hms_ledger.settlements import process_doctor_payment
        data = _json_body()
        payout = process_doctor_payment(
            doctor_id,
            data.get('amount'),
            _parse_period_bound(data.get('periodStart'), 'periodStart'),
            _parse_period_bound(data.get('periodEnd'), 'periodEnd'),
            notes=data.get('notes'),
        )
        return jsonify({'success': True, 'payment_id': payout.payment_id, 'amount': _money(payout.amount)}), 201
    except Exception as e:
        return _error_response(e)


@app.route('/notifications/<role>')
def role_notifications(role):
    try:
        from hms_ledger.notifications import get_notifications_for_role
        notes = get_notifications_for_role(role, unread_only=request.args.get('unread') == '1')
        return jsonify({'success': True, 'notifications': [{
            'notification_id': note.notification_id,
            'title': note.title,
            'message': note.message,
            'patient_id': note.patient_id,
            'created_date': _timestamp(note.created_date),
            'is_read': note.is_read
        } for note in notes]})
    except Exception as e:
        return _error_response(e)


@app.route('/notifications/<role>/read', methods=['POST'])
def read_notifications(role):
    try:
        from hms_ledger.notifications import mark_role_notifications_read
        return jsonify({'success': True, 'marked': mark_role_notifications_read(role)})
    except Exception as e:
        return _error_response(e)


@app.cli.command('accrue-room-charges')
@click.option('--date', 'on_date', default=None, help='Day to charge (YYYY-MM-DD), defaults to today.')
def accrue_room_charges(on_date):
    """Add the daily room rent line to every open inpatient bill."""
    from hms_ledger.admissions import accrue_daily_room_charges
    day = datetime.strptime(on_date, '%Y-%m-%d').date() if on_date else None
    charged = accrue_daily_room_charges(day)
    click.echo(f"{charged} bills charged")


def init_db():
    with app.app_context():
        from hms_ledger import models  # noqa: F401
        db.create_all()
        logging.info("Database tables created successfully")

# Initialize database tables
init_db()
