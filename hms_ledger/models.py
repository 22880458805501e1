from datetime import datetime

from hms_ledger.app import db


class BillStatus:
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"

    ALL = (PENDING, PARTIAL, PAID)
    OUTSTANDING = (PENDING, PARTIAL)


class PaymentMethod:
    CASH = "Cash"
    CARD = "Card"
    BANK_TRANSFER = "BankTransfer"
    CHEQUE = "Cheque"
    ONLINE = "Online"

    ALL = (CASH, CARD, BANK_TRANSFER, CHEQUE, ONLINE)


class ShiftStatus:
    OPEN = "Open"
    CLOSED = "Closed"


class AdmissionStatus:
    ADMITTED = "Admitted"
    DISCHARGED = "Discharged"


class BedStatus:
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"
    CLEANING = "Cleaning"
    MAINTENANCE = "Maintenance"


class OperationStatus:
    PROPOSED = "Proposed"
    RECOMMENDED = "Recommended"
    PENDING_DEPOSIT = "Pending Deposit"
    ADVANCE_REQUESTED = "Advance Payment Requested"
    SCHEDULED = "Scheduled"
    RUNNING = "Running"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    ALL = (PROPOSED, RECOMMENDED, PENDING_DEPOSIT, ADVANCE_REQUESTED,
           SCHEDULED, RUNNING, COMPLETED, CANCELLED)
    AWAITING_DEPOSIT = (PENDING_DEPOSIT, ADVANCE_REQUESTED)
    AWAITING_APPROVAL = (RECOMMENDED, PENDING_DEPOSIT, ADVANCE_REQUESTED)
    OCCUPYING_THEATER = (SCHEDULED, RUNNING)


class AppointmentStatus:
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Role:
    ADMIN = "Admin"
    OT_STAFF = "OTStaff"
    TELLER = "Teller"


Money = db.Numeric(12, 2)


class Patient(db.Model):
    __tablename__ = "Patients"

    patient_id = db.Column("PatientId", db.Integer, primary_key=True)
    full_name = db.Column("FullName", db.String(150), nullable=False)
    phone = db.Column("Phone", db.String(20))
    is_active = db.Column("IsActive", db.Boolean, nullable=False, default=True)


class Doctor(db.Model):
    __tablename__ = "Doctors"

    doctor_id = db.Column("DoctorId", db.Integer, primary_key=True)
    full_name = db.Column("FullName", db.String(150), nullable=False)
    specialization = db.Column("Specialization", db.String(100))
    consultation_fee = db.Column("ConsultationFee", Money, nullable=False, default=0)
    commission_rate = db.Column("CommissionRate", db.Numeric(5, 2))  # percent
    is_active = db.Column("IsActive", db.Boolean, nullable=False, default=True)

    shifts = db.relationship('DoctorShift', backref='doctor', lazy=True)


class DoctorShift(db.Model):
    """Weekly roster entry; day_of_week holds the English day name."""
    __tablename__ = "DoctorShifts"

    shift_id = db.Column("ShiftId", db.Integer, primary_key=True)
    doctor_id = db.Column("DoctorId", db.Integer, db.ForeignKey("Doctors.DoctorId"), nullable=False)
    day_of_week = db.Column("DayOfWeek", db.String(10), nullable=False)
    start_time = db.Column("StartTime", db.Time, nullable=False)
    end_time = db.Column("EndTime", db.Time, nullable=False)
    shift_type = db.Column("ShiftType", db.String(20))  # Morning, Evening, Night, Full Day
    is_active = db.Column("IsActive", db.Boolean, nullable=False, default=True)
    notes = db.Column("Notes", db.String(255))
    created_at = db.Column("CreatedAt", db.DateTime, default=datetime.now)


class Appointment(db.Model):
    __tablename__ = "Appointments"

    appointment_id = db.Column("AppointmentId", db.Integer, primary_key=True)
    patient_id = db.Column("PatientId", db.Integer, nullable=False)
    doctor_id = db.Column("DoctorId", db.Integer, db.ForeignKey("Doctors.DoctorId"), nullable=False)
    appointment_date = db.Column("AppointmentDate", db.DateTime, nullable=False)
    status = db.Column("Status", db.String(20), nullable=False, default=AppointmentStatus.SCHEDULED)


class Bed(db.Model):
    __tablename__ = "Beds"

    bed_id = db.Column("BedId", db.Integer, primary_key=True)
    bed_number = db.Column("BedNumber", db.String(30), nullable=False)
    status = db.Column("Status", db.String(20), nullable=False, default=BedStatus.AVAILABLE)
    daily_rate = db.Column("DailyRate", Money, nullable=False, default=0)
    is_active = db.Column("IsActive", db.Boolean, nullable=False, default=True)


class Admission(db.Model):
    __tablename__ = "Admissions"

    admission_id = db.Column("AdmissionId", db.Integer, primary_key=True)
    patient_id = db.Column("PatientId", db.Integer, nullable=False)
    bed_id = db.Column("BedId", db.Integer, db.ForeignKey("Beds.BedId"), nullable=False)
    admission_date = db.Column("AdmissionDate", db.DateTime, nullable=False, default=datetime.now)
    discharge_date = db.Column("DischargeDate", db.DateTime)
    status = db.Column("Status", db.String(20), nullable=False, default=AdmissionStatus.ADMITTED)
    notes = db.Column("Notes", db.String(500))

    bed = db.relationship('Bed', lazy=True)


class UserShift(db.Model):
    __tablename__ = "UserShifts"
    # at most one open cashier session per user
    __table_args__ = (
        db.Index(
            "UX_UserShifts_OpenPerUser", "UserId", unique=True,
            sqlite_where=db.text("Status = 'Open'"),
            postgresql_where=db.text("\"Status\" = 'Open'"),
        ),
    )

    shift_id = db.Column("ShiftId", db.Integer, primary_key=True)
    user_id = db.Column("UserId", db.String(100), nullable=False, index=True)
    start_time = db.Column("StartTime", db.DateTime, nullable=False, default=datetime.now)
    end_time = db.Column("EndTime", db.DateTime)
    starting_cash = db.Column("StartingCash", Money, nullable=False, default=0)
    ending_cash = db.Column("EndingCash", Money)  # expected, computed at close
    actual_cash = db.Column("ActualCash", Money)  # counted at close
    status = db.Column("Status", db.String(10), nullable=False, default=ShiftStatus.OPEN)
    notes = db.Column("Notes", db.String(500))

    @property
    def discrepancy(self):
        if self.actual_cash is None or self.ending_cash is None:
            return None
        return self.actual_cash - self.ending_cash


class Bill(db.Model):
    __tablename__ = "Bills"

    bill_id = db.Column("BillId", db.Integer, primary_key=True)
    patient_id = db.Column("PatientId", db.Integer, nullable=False, index=True)
    total_amount = db.Column("TotalAmount", Money, nullable=False)
    paid_amount = db.Column("PaidAmount", Money, nullable=False, default=0)
    due_amount = db.Column("DueAmount", Money, nullable=False)
    status = db.Column("Status", db.String(20), nullable=False, default=BillStatus.PENDING)  # Pending, Partial, Paid
    bill_date = db.Column("BillDate", db.DateTime, nullable=False, default=datetime.now)
    shift_id = db.Column("ShiftId", db.Integer, db.ForeignKey("UserShifts.ShiftId"))
    created_by = db.Column("CreatedBy", db.String(100))
    admission_id = db.Column("AdmissionId", db.Integer, db.ForeignKey("Admissions.AdmissionId"))
    version = db.Column("Version", db.Integer, nullable=False)

    items = db.relationship('BillItem', backref='bill', lazy=True, cascade='all, delete-orphan',
                            order_by='BillItem.bill_item_id')
    payments = db.relationship('Payment', backref='bill', lazy=True,
                               order_by='Payment.payment_id')
    admission = db.relationship('Admission', lazy=True)

    # concurrent writers to the paid/due/status triple fail instead of overwriting
    __mapper_args__ = {"version_id_col": version}


class BillItem(db.Model):
    __tablename__ = "BillItems"

    bill_item_id = db.Column("BillItemId", db.Integer, primary_key=True)
    bill_id = db.Column("BillId", db.Integer, db.ForeignKey("Bills.BillId"), nullable=False)
    description = db.Column("Description", db.String(200), nullable=False)
    amount = db.Column("Amount", Money, nullable=False)
    category = db.Column("Category", db.String(50), nullable=False, default="General")


class Payment(db.Model):
    __tablename__ = "Payments"

    payment_id = db.Column("PaymentId", db.Integer, primary_key=True)
    bill_id = db.Column("BillId", db.Integer, db.ForeignKey("Bills.BillId"), nullable=False, index=True)
    amount = db.Column("Amount", Money, nullable=False)
    payment_method = db.Column("PaymentMethod", db.String(20), nullable=False)
    payment_date = db.Column("PaymentDate", db.DateTime, nullable=False, default=datetime.now)
    reference_number = db.Column("ReferenceNumber", db.String(100))
    teller_id = db.Column("TellerId", db.String(100), nullable=False)
    shift_id = db.Column("ShiftId", db.Integer, db.ForeignKey("UserShifts.ShiftId"), nullable=False, index=True)
    remarks = db.Column("Remarks", db.String(500))


class PatientOperation(db.Model):
    __tablename__ = "PatientOperations"

    operation_id = db.Column("OperationId", db.Integer, primary_key=True)
    patient_id = db.Column("PatientId", db.Integer, nullable=False, index=True)
    doctor_id = db.Column("DoctorId", db.Integer, db.ForeignKey("Doctors.DoctorId"), nullable=False)
    package_id = db.Column("PackageId", db.Integer)
    theater_id = db.Column("TheaterId", db.Integer)
    status = db.Column("Status", db.String(40), nullable=False, default=OperationStatus.PROPOSED)
    scheduled_date = db.Column("ScheduledDate", db.DateTime, nullable=False)
    duration_minutes = db.Column("DurationMinutes", db.Integer, nullable=False, default=60)
    actual_start_time = db.Column("ActualStartTime", db.DateTime)
    agreed_operation_cost = db.Column("AgreedOperationCost", Money)
    agreed_medicine_cost = db.Column("AgreedMedicineCost", Money)
    agreed_equipment_cost = db.Column("AgreedEquipmentCost", Money)
    is_transferred = db.Column("IsTransferred", db.Boolean, nullable=False, default=False)
    urgency = db.Column("Urgency", db.String(20))  # Low, Medium, High, Critical
    expected_stay_days = db.Column("ExpectedStayDays", db.Integer, nullable=False, default=0)
    notes = db.Column("Notes", db.String(1000))

    @property
    def agreed_total(self):
        costs = [self.agreed_operation_cost, self.agreed_medicine_cost, self.agreed_equipment_cost]
        if all(cost is None for cost in costs):
            return None
        return sum(cost for cost in costs if cost is not None)


class DoctorPayment(db.Model):
    __tablename__ = "DoctorPayments"

    payment_id = db.Column("PaymentId", db.Integer, primary_key=True)
    doctor_id = db.Column("DoctorId", db.Integer, db.ForeignKey("Doctors.DoctorId"), nullable=False, index=True)
    amount = db.Column("Amount", Money, nullable=False)
    payment_date = db.Column("PaymentDate", db.DateTime, nullable=False, default=datetime.now)
    period_start = db.Column("PeriodStart", db.DateTime, nullable=False)
    period_end = db.Column("PeriodEnd", db.DateTime, nullable=False)
    status = db.Column("Status", db.String(20), nullable=False, default="Processed")
    notes = db.Column("Notes", db.String(500))


class Notification(db.Model):
    __tablename__ = "Notifications"

    notification_id = db.Column("NotificationId", db.Integer, primary_key=True)
    patient_id = db.Column("PatientId", db.Integer)
    doctor_id = db.Column("DoctorId", db.Integer)
    target_role = db.Column("TargetRole", db.String(50), index=True)
    target_user_id = db.Column("TargetUserId", db.String(100))
    title = db.Column("Title", db.String(200), nullable=False)
    message = db.Column("Message", db.String(1000), nullable=False)
    created_date = db.Column("CreatedDate", db.DateTime, nullable=False, default=datetime.now)
    is_read = db.Column("IsRead", db.Boolean, nullable=False, default=False)
