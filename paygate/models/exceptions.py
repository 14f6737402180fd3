class PayGateError(Exception):
    """Base class for domain errors surfaced to the API layer."""


class NoProcessorAvailableError(PayGateError):
    def __init__(self, amount: int, excluded: str | None = None):
        self.amount = amount
        self.excluded = excluded
        detail = f"No eligible processor for amount {amount}"
        if excluded:
            detail += f" (excluding {excluded})"
        super().__init__(detail)


class ProcessorNotFoundError(PayGateError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Processor '{code}' not found")


class MerchantNotFoundError(PayGateError):
    def __init__(self, merchant_id: str):
        self.merchant_id = merchant_id
        super().__init__(f"Merchant '{merchant_id}' not found")


class TransactionNotFoundError(PayGateError):
    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction '{transaction_id}' not found")


class NotificationNotFoundError(PayGateError):
    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Webhook notification '{notification_id}' not found")


class InvalidTransitionError(PayGateError):
    def __init__(self, transaction_id: str, current: str, target: str):
        self.transaction_id = transaction_id
        self.current = current
        self.target = target
        super().__init__(f"Transaction '{transaction_id}' cannot move from {current} to {target}")


class UnsupportedOperationError(PayGateError):
    def __init__(self, processor_code: str, operation: str):
        self.processor_code = processor_code
        self.operation = operation
        super().__init__(f"Processor '{processor_code}' does not support {operation}")


class ProcessorOperationError(PayGateError):
    def __init__(self, processor_code: str, operation: str, error_code: str | None):
        self.processor_code = processor_code
        self.operation = operation
        self.error_code = error_code
        super().__init__(f"Processor '{processor_code}' rejected {operation}: {error_code or 'unknown error'}")


class OperationInProgressError(PayGateError):
    def __init__(self, transaction_id: str, operation: str):
        self.transaction_id = transaction_id
        self.operation = operation
        super().__init__(
            f"Transaction '{transaction_id}' is still being authorized; {operation} is not allowed yet"
        )
