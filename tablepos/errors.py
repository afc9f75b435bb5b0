"""Error taxonomy shared by the repository, the engine and the HTTP layer."""


class POSError(Exception):
    """Base class for every error the order engine raises on purpose."""


class ValidationError(POSError, ValueError):
    """Bad input. Nothing was written."""


class NotFoundError(POSError, LookupError):
    """An order, line item or table session does not exist."""


class ConflictError(POSError):
    """The order is in a state that does not allow the operation (e.g. already paid)."""


class StoreError(POSError):
    """The database could not be reached or the transaction was aborted."""


__all__ = ["POSError", "ValidationError", "NotFoundError", "ConflictError", "StoreError"]
