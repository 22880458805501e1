import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from hms_ledger.app import db
from hms_ledger.errors import ValidationError
from hms_ledger.models import Notification
from hms_ledger.store import transaction_scope

logger = logging.getLogger(__name__)


def notify(session, title, message, role=None, user_id=None, patient_id=None, doctor_id=None):
    """Queue a notification inside the caller's transaction.

    The row is written under a SAVEPOINT: it commits together with the
    surrounding write, and if it cannot be stored the failure is logged and
    the surrounding write carries on without it.
    """
    if not any((role, user_id, patient_id, doctor_id)):
        raise ValidationError("notification needs a target role, user, patient or doctor")

    note = Notification(
        target_role=role,
        target_user_id=user_id,
        patient_id=patient_id,
        doctor_id=doctor_id,
        title=title,
        message=message,
    )
    try:
        with session.begin_nested():
            session.add(note)
    except SQLAlchemyError as exc:
        logger.error("Dropped notification %r for %s: %s", title, role or user_id or patient_id or doctor_id, exc)
        return None
    return note


def get_notifications_for_role(role, unread_only=False):
    query = select(Notification).where(Notification.target_role == role)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_date.desc(), Notification.notification_id.desc())
    return db.session.execute(query).scalars().all()


def mark_role_notifications_read(role):
    with transaction_scope("mark_role_notifications_read", role=role) as session:
        notes = session.execute(
            select(Notification).where(Notification.target_role == role, Notification.is_read.is_(False))
        ).scalars().all()
        for note in notes:
            note.is_read = True
    return len(notes)
