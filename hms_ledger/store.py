import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from hms_ledger.app import db
from hms_ledger.errors import LedgerError, TransactionFailure, ValidationError
from hms_ledger.models import Bill, UserShift

logger = logging.getLogger(__name__)

_SCOPE_KEY = "hms_ledger.scope"


@contextmanager
def transaction_scope(operation, **context):
    """Run a multi-statement write as one atomic unit.

    Commits when the block exits cleanly and rolls back on any exception.
    Store errors are re-raised as TransactionFailure tagged with
    ``operation`` and ``context``; ledger errors propagate unchanged.
    Scopes do not nest: code running inside one writes through the
    session it was handed.
    """
    session = db.session
    if session.info.get(_SCOPE_KEY):
        raise RuntimeError(
            f"{operation} opened inside {session.info[_SCOPE_KEY]}; pass the active session instead"
        )
    session.info[_SCOPE_KEY] = operation
    try:
        yield session
        session.commit()
    except LedgerError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("%s rolled back %s: %s", operation, context, exc)
        raise TransactionFailure(operation, context, exc) from exc
    except Exception:
        session.rollback()
        logger.exception("%s rolled back %s", operation, context)
        raise
    finally:
        session.info.pop(_SCOPE_KEY, None)


def lock_bill(session, bill_id):
    """Load a bill for update, refreshing any copy already in the session."""
    return session.get(Bill, bill_id, with_for_update=True, populate_existing=True)


def lock_shift(session, shift_id):
    return session.get(UserShift, shift_id, with_for_update=True, populate_existing=True)


def require_id(value, field):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer, got {value!r}")
    return value
