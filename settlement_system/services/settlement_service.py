# settlement_system/services/settlement_service.py
"""
Purchase settlement - turns a confirmed deposit into exactly one live purchase.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
import logging

import config
from models import Package, Payment, Purchase
from settlement_system.config.rates import (
    PaymentStatus, PurchaseStatus, PAID_PURCHASE_STATUSES, INACTIVE_PURCHASE_STATUSES
)
from settlement_system.errors import ExcessiveOverpay, InsufficientAmount, PackageNotFound
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.services.idempotency_gate import IdempotencyGate
from settlement_system.store.ledger_store import insertIfAbsent, unitOfWork
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "idempotency_system"


@dataclass
class PaymentEvent:
    """Confirmed deposit as delivered by the payment-verification collaborator."""
    txHash: str
    network: str
    userId: int
    packageId: int
    amount: Decimal
    currency: str = field(default_factory=lambda: config.DEFAULT_CURRENCY)
    fromAddress: Optional[str] = None
    toAddress: Optional[str] = None
    blockNumber: Optional[int] = None
    confirmations: int = 0


@dataclass
class AmountValidation:
    packagePrice: Decimal
    amountPaid: Decimal
    overpay: Decimal
    overpayPercent: Decimal


@dataclass
class SettlementResult:
    payment: Payment
    purchase: Purchase
    duplicatesMarked: int
    amountValidation: Optional[AmountValidation]
    alreadyProcessed: bool = False


def validateAmountTolerance(
        transactionAmount,
        packagePrice,
        maxOverpayPercent=Decimal("10")
) -> AmountValidation:
    """
    Accept amount >= price with at most maxOverpayPercent overpay (inclusive).
    Raises InsufficientAmount or ExcessiveOverpay.
    """
    amount = Decimal(str(transactionAmount))
    price = Decimal(str(packagePrice))
    maxPercent = Decimal(str(maxOverpayPercent))

    if price <= 0:
        raise ValueError(f"Package price must be positive, got {price}")

    if amount < price:
        raise InsufficientAmount(
            expected=price,
            received=amount,
            message=f"Received {amount}, package price is {price}"
        )

    overpay = amount - price
    overpayPercent = overpay / price * 100

    if overpayPercent > maxPercent:
        raise ExcessiveOverpay(
            expected=price,
            received=amount,
            overpayPercent=overpayPercent,
            message=f"Overpay {overpayPercent:.2f}% exceeds allowed {maxPercent}%"
        )

    return AmountValidation(
        packagePrice=price,
        amountPaid=amount,
        overpay=overpay,
        overpayPercent=overpayPercent
    )


class SettlementService:
    """Idempotent settlement of confirmed deposits into purchases."""

    def __init__(
            self,
            session: Session,
            maxOverpayPercent: Optional[Decimal] = None,
            duplicateWindowHours: Optional[int] = None,
            timeoutSeconds: Optional[float] = None
    ):
        self.session = session
        self.maxOverpayPercent = maxOverpayPercent if maxOverpayPercent is not None else config.MAX_OVERPAY_PERCENT
        self.duplicateWindowHours = duplicateWindowHours or config.DUPLICATE_WINDOW_HOURS
        self.timeoutSeconds = timeoutSeconds or config.STORE_TIMEOUT_SECONDS
        self.gate = IdempotencyGate(session)

    async def processTransaction(self, event: PaymentEvent) -> SettlementResult:
        """
        Full intake: consult the idempotency gate, settle only when the
        deposit has not been processed yet.
        """
        admission = await self.gate.admit(event.txHash, event.network)

        if admission.alreadyProcessed:
            with unitOfWork(self.session, "settlement.loadPrior", admission.purchaseId):
                payment = self.session.get(Payment, admission.paymentId)
                purchase = self.session.get(Purchase, admission.purchaseId)

            return SettlementResult(
                payment=payment,
                purchase=purchase,
                duplicatesMarked=0,
                amountValidation=None,
                alreadyProcessed=True
            )

        return await self.settle(event)

    async def settle(self, event: PaymentEvent) -> SettlementResult:
        """
        Validate the amount, upsert the payment and purchase and mark
        competing purchases as duplicates, all in one transaction.
        """
        key = (event.txHash, event.network)

        with unitOfWork(self.session, "settlement.settle", key, timeoutSeconds=self.timeoutSeconds):
            package = self.session.get(Package, event.packageId)
            if not package:
                raise PackageNotFound(f"Package {event.packageId} not found")

            amountValidation = validateAmountTolerance(event.amount, package.price, self.maxOverpayPercent)

            payment = self.upsertPayment(event)
            purchase = self.upsertPurchase(event, package, payment, amountValidation)
            duplicatesMarked = self.markDuplicatePurchases(purchase, event)

        logger.info(
            f"Settled {event.txHash}/{event.network}: payment {payment.paymentID}, "
            f"purchase {purchase.purchaseID}, overpay {amountValidation.overpay}, "
            f"duplicates marked {duplicatesMarked}"
        )

        await eventBus.emit(SettlementEvents.SETTLEMENT_COMPLETED, {
            "paymentId": payment.paymentID,
            "purchaseId": purchase.purchaseID,
            "userId": purchase.userID,
            "txHash": event.txHash,
            "network": event.network,
            "duplicatesMarked": duplicatesMarked
        })

        if duplicatesMarked:
            await eventBus.emit(SettlementEvents.DUPLICATES_MARKED, {
                "canonicalId": purchase.purchaseID,
                "count": duplicatesMarked
            })

        return SettlementResult(
            payment=payment,
            purchase=purchase,
            duplicatesMarked=duplicatesMarked,
            amountValidation=amountValidation
        )

    def upsertPayment(self, event: PaymentEvent) -> Payment:
        """Create or complete the payment for (txHash, network). Same input, same stored row."""
        now = timeMachine.now
        amount = Decimal(str(event.amount))

        payment, created = insertIfAbsent(
            self.session,
            Payment,
            {"txHash": event.txHash, "network": event.network},
            {
                "userID": event.userId,
                "amount": amount,
                "currency": event.currency,
                "fromAddress": event.fromAddress,
                "toAddress": event.toAddress,
                "blockNumber": event.blockNumber,
                "confirmations": event.confirmations,
                "status": PaymentStatus.COMPLETED.value,
                "verifiedAt": now,
                "completedAt": now,
                "createdAt": now,
                "notes": {"createdBy": SYSTEM_ACTOR}
            }
        )

        if created:
            self.session.flush()
            return payment

        payment.userID = event.userId
        payment.amount = amount
        payment.currency = event.currency
        payment.fromAddress = event.fromAddress or payment.fromAddress
        payment.toAddress = event.toAddress or payment.toAddress
        payment.blockNumber = event.blockNumber or payment.blockNumber
        payment.confirmations = max(payment.confirmations or 0, event.confirmations or 0)
        payment.status = PaymentStatus.COMPLETED.value
        payment.verifiedAt = payment.verifiedAt or now
        payment.completedAt = payment.completedAt or now
        if "createdBy" not in (payment.notes or {}):
            payment.notes = {**(payment.notes or {}), "updatedBy": SYSTEM_ACTOR}

        self.session.flush()
        return payment

    def _windowStart(self):
        return timeMachine.hoursAgo(self.duplicateWindowHours)

    def upsertPurchase(
            self,
            event: PaymentEvent,
            package: Package,
            payment: Payment,
            amountValidation: AmountValidation
    ) -> Purchase:
        """Advance the matching live purchase to paid, or create it."""
        now = timeMachine.now

        # 1. Same deposit
        purchase = self.session.query(Purchase).filter(
            Purchase.txHash == event.txHash,
            Purchase.status.notin_(INACTIVE_PURCHASE_STATUSES)
        ).order_by(Purchase.purchaseID).first()

        # 2. Unpaid order for the same package placed in the window
        if not purchase:
            purchase = self.session.query(Purchase).filter(
                Purchase.userID == event.userId,
                Purchase.packageID == event.packageId,
                Purchase.status == PurchaseStatus.PENDING.value,
                Purchase.createdAt >= self._windowStart()
            ).order_by(Purchase.createdAt, Purchase.purchaseID).first()

        if purchase:
            if purchase.status not in PAID_PURCHASE_STATUSES:
                purchase.status = PurchaseStatus.PAID.value
            purchase.paidAt = purchase.paidAt or now
            purchase.txHash = event.txHash
            purchase.network = event.network
            purchase.paymentID = payment.paymentID
            purchase.amountPaid = amountValidation.amountPaid
            purchase.overpay = amountValidation.overpay
            purchase.notes = {**(purchase.notes or {}), "updatedBy": SYSTEM_ACTOR}
            self.session.flush()
            return purchase

        purchase = Purchase(
            userID=event.userId,
            packageID=event.packageId,
            paymentID=payment.paymentID,
            amount=package.price,
            amountPaid=amountValidation.amountPaid,
            overpay=amountValidation.overpay,
            currency=event.currency,
            status=PurchaseStatus.PAID.value,
            firstCycleCompleted=False,
            txHash=event.txHash,
            network=event.network,
            paidAt=now,
            createdAt=now,
            notes={"createdBy": SYSTEM_ACTOR}
        )
        self.session.add(purchase)
        self.session.flush()

        logger.info(f"Created purchase {purchase.purchaseID} for user {event.userId}, package {event.packageId}")
        return purchase

    def markDuplicatePurchases(self, canonical: Purchase, event: PaymentEvent) -> int:
        """
        Cancel every other live purchase for the same deposit, or for the same
        (user, package) created in the window.
        """
        now = timeMachine.now

        duplicates = self.session.query(Purchase).filter(
            Purchase.purchaseID != canonical.purchaseID,
            Purchase.status.notin_(INACTIVE_PURCHASE_STATUSES),
            or_(
                Purchase.txHash == event.txHash,
                and_(
                    Purchase.userID == event.userId,
                    Purchase.packageID == event.packageId,
                    Purchase.createdAt >= self._windowStart()
                )
            )
        ).all()

        for duplicate in duplicates:
            duplicate.status = PurchaseStatus.CANCELLED_DUPLICATE.value
            duplicate.cancelledAt = now
            duplicate.canonicalID = canonical.purchaseID
            duplicate.notes = {
                **(duplicate.notes or {}),
                "cancelReason": "duplicate_detected_by_idempotency",
                "cancelledBy": SYSTEM_ACTOR
            }
            logger.warning(
                f"Purchase {duplicate.purchaseID} marked as duplicate of {canonical.purchaseID} "
                f"({event.txHash}/{event.network})"
            )

        if duplicates:
            self.session.flush()

        return len(duplicates)
