# ordertrack/errors.py


class OrderStoreError(Exception):
    pass


class StoreUnavailable(OrderStoreError):
    """Raised when the store is used before a successful open, or after close."""


class TransactionFailed(OrderStoreError):
    """The underlying database rejected the operation. Message comes from the cause."""


class NotFound(OrderStoreError):
    pass


class ValidationFailed(OrderStoreError):
    pass
