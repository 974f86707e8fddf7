# settlement_system/errors.py
"""
Settlement error taxonomy.
"""
from decimal import Decimal
from typing import Any, Optional


class SettlementError(Exception):
    pass


class AmountValidationError(SettlementError):
    reason = "invalid_amount"

    def __init__(self, expected: Decimal, received: Decimal, message: str,
                 overpayPercent: Optional[Decimal] = None):
        super().__init__(message)
        self.expected = expected
        self.received = received
        self.overpayPercent = overpayPercent


class InsufficientAmount(AmountValidationError):
    reason = "insufficient_amount"

    @property
    def shortfall(self) -> Decimal:
        return self.expected - self.received


class ExcessiveOverpay(AmountValidationError):
    reason = "excessive_overpay"


class PackageNotFound(SettlementError):
    pass


class TransientStoreFailure(SettlementError):
    """Timeout or lost connection. Safe to retry with the same input."""

    def __init__(self, operation: str, key: Any = None, cause: Optional[BaseException] = None):
        message = f"{operation} failed for {key!r}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.key = key
        self.cause = cause


class BenefitEventNotFound(SettlementError):
    pass
