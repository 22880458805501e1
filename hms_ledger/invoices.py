import enum
import logging
from datetime import datetime

from sqlalchemy import select

from hms_ledger.app import db
from hms_ledger.errors import NotFoundError, ValidationError
from hms_ledger.models import Admission, Bill, BillItem, BillStatus, UserShift
from hms_ledger.money import PAID_EPSILON, ZERO, derive_bill_state, to_money
from hms_ledger.store import require_id, transaction_scope

logger = logging.getLogger(__name__)

DEFAULT_ITEM_DESCRIPTION = "No description"
DEFAULT_ITEM_CATEGORY = "General"


class BillSort(enum.Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    LARGEST_DUE = "largest_due"

    def order_by(self):
        if self is BillSort.OLDEST:
            return (Bill.bill_date.asc(), Bill.bill_id.asc())
        if self is BillSort.LARGEST_DUE:
            return (Bill.due_amount.desc(), Bill.bill_id.desc())
        return (Bill.bill_date.desc(), Bill.bill_id.desc())


def _build_items(items):
    built = []
    for index, item in enumerate(items or []):
        description = (item.get('description') or '').strip() or DEFAULT_ITEM_DESCRIPTION
        amount = to_money(item.get('amount'), f"items[{index}].amount")
        if amount < ZERO:
            raise ValidationError(f"items[{index}].amount cannot be negative")
        category = (item.get('category') or '').strip() or DEFAULT_ITEM_CATEGORY
        built.append(BillItem(description=description, amount=amount, category=category))
    return built


def create_bill(patient_id, items=None, total_amount=None, paid_amount=0,
                shift_id=None, created_by=None, admission_id=None, bill_date=None):
    """Create a bill header and its line items as one unit and return the bill id.

    ``items`` is a sequence of mappings with ``description``, ``amount`` and
    ``category``. When ``total_amount`` is omitted the bill total is the sum
    of the items; when both are given they have to agree.
    """
    require_id(patient_id, "patient_id")
    bill_items = _build_items(items)
    items_total = sum((item.amount for item in bill_items), ZERO)

    if total_amount is None:
        total = items_total
    else:
        total = to_money(total_amount, "total_amount")
        if total < ZERO:
            raise ValidationError("Bill total amount cannot be negative")
        if bill_items and abs(total - items_total) > PAID_EPSILON:
            raise ValidationError(
                f"Bill total {total} does not match the sum of its items {items_total}"
            )

    paid = to_money(paid_amount, "paid_amount")
    if paid < ZERO:
        raise ValidationError("Paid amount cannot be negative")
    due, status = derive_bill_state(total, paid)

    with transaction_scope("create_bill", patient_id=patient_id) as session:
        if shift_id is not None and session.get(UserShift, shift_id) is None:
            raise NotFoundError("Shift", shift_id)
        if admission_id is not None:
            admission = session.get(Admission, admission_id)
            if admission is None:
                raise NotFoundError("Admission", admission_id)
            if admission.patient_id != patient_id:
                raise ValidationError(
                    f"Admission {admission_id} belongs to patient {admission.patient_id}, not {patient_id}"
                )

        bill = Bill(
            patient_id=patient_id,
            total_amount=total,
            paid_amount=paid,
            due_amount=due,
            status=status,
            bill_date=bill_date or datetime.now(),
            shift_id=shift_id,
            created_by=created_by,
            admission_id=admission_id,
        )
        bill.items.extend(bill_items)
        session.add(bill)
        session.flush()
        bill_id = bill.bill_id

    logger.info("Created bill %s for patient %s: total=%s items=%d", bill_id, patient_id, total, len(bill_items))
    return bill_id


def get_bill(bill_id):
    bill = db.session.get(Bill, bill_id)
    if bill is None:
        raise NotFoundError("Bill", bill_id)
    return bill


def get_bill_items(bill_id):
    get_bill(bill_id)
    return db.session.execute(
        select(BillItem).where(BillItem.bill_id == bill_id).order_by(BillItem.bill_item_id)
    ).scalars().all()


def list_bills(status=None, patient_id=None, sort=BillSort.NEWEST, limit=100):
    query = select(Bill)
    if status:
        if status not in BillStatus.ALL:
            raise ValidationError(f"Unknown bill status {status!r}")
        query = query.where(Bill.status == status)
    if patient_id is not None:
        query = query.where(Bill.patient_id == patient_id)
    if not isinstance(sort, BillSort):
        try:
            sort = BillSort(sort)
        except ValueError:
            raise ValidationError(f"Unknown sort key {sort!r}")
    query = query.order_by(*sort.order_by()).limit(limit)
    return db.session.execute(query).scalars().all()
