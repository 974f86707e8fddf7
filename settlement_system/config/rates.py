# settlement_system/config/rates.py
"""
Settlement statuses, rates and cycle constants.
"""
from enum import Enum
from decimal import Decimal


class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    VERIFIED = "verified"  # Пишется старыми потоками депозитов, эквивалент completed


class PurchaseStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CANCELLED_DUPLICATE = "cancelled_duplicate"


class BenefitStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BenefitKind(Enum):
    DAILY_BENEFIT = "daily_benefit"
    COMPENSATION = "compensation"


class CommissionType(Enum):
    DIRECT_REFERRAL = "direct_referral"
    POOL_BONUS = "pool_bonus"


class CommissionStatus(Enum):
    PENDING = "pending"
    PAID = "paid"


SUCCESSFUL_PAYMENT_STATUSES = (PaymentStatus.COMPLETED.value, PaymentStatus.VERIFIED.value)
PAID_PURCHASE_STATUSES = (PurchaseStatus.PAID.value, PurchaseStatus.COMPLETED.value)
INACTIVE_PURCHASE_STATUSES = (PurchaseStatus.CANCELLED.value, PurchaseStatus.CANCELLED_DUPLICATE.value)

# Benefit cycle
DEFAULT_DAILY_RATE = Decimal("0.125")  # 12.5% в день
DAYS_PER_CYCLE = 8  # Дни начисления
PAUSE_DAYS = 1  # День паузы после каждого цикла
DEFAULT_CYCLES_TOTAL = 5

# Commissions
DIRECT_REFERRAL_PERCENTAGE = Decimal("0.10")  # 10% от цены пакета
POOL_BONUS_PERCENTAGE = Decimal("0.05")  # 5% от baseAmount за цикл

# Rounding
AMOUNT_PRECISION = Decimal("0.01")
