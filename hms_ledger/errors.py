class LedgerError(Exception):
    """Base class for failures raised by the billing engine."""


class ValidationError(LedgerError):
    """Caller-supplied input violates a precondition. Nothing was written."""


class NotFoundError(ValidationError):
    def __init__(self, entity, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class TransactionFailure(LedgerError):
    """The store could not commit an atomic unit; all of it was rolled back.

    The message names the operation and the ids involved but not the raw
    database error, which stays reachable through ``__cause__``.
    """

    def __init__(self, operation, context=None, cause=None):
        self.operation = operation
        self.context = dict(context or {})
        message = f"{operation} failed"
        if self.context:
            detail = ", ".join(f"{key}={value}" for key, value in sorted(self.context.items()))
            message += f" ({detail})"
        if cause is not None:
            message += f": {type(cause).__name__}"
        super().__init__(message)
