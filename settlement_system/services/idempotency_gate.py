# settlement_system/services/idempotency_gate.py
"""
Idempotency gate - tells the caller whether a deposit was already settled.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
import logging

from models import Payment, Purchase
from settlement_system.config.rates import SUCCESSFUL_PAYMENT_STATUSES, PurchaseStatus
from settlement_system.store.ledger_store import unitOfWork

logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    alreadyProcessed: bool
    paymentId: Optional[int] = None
    purchaseId: Optional[int] = None
    processedAt: Optional[datetime] = None


class IdempotencyGate:
    """Looks up (txHash, network) in the ledger before any side effect happens."""

    def __init__(self, session: Session):
        self.session = session

    async def admit(self, txHash: str, network: str) -> AdmissionResult:
        """
        alreadyProcessed=True means a completed Payment and a live Purchase
        exist for the reference: the caller must not do anything else.

        Store errors are raised as TransientStoreFailure, never turned into
        an admission.
        """
        if not txHash or not network:
            raise ValueError("txHash and network are required")

        with unitOfWork(self.session, "idempotency.admit", (txHash, network)):
            payment = self.session.query(Payment).filter(
                Payment.txHash == txHash,
                Payment.network == network,
                Payment.status.in_(SUCCESSFUL_PAYMENT_STATUSES)
            ).first()

            if not payment:
                return AdmissionResult(alreadyProcessed=False)

            purchase = self.session.query(Purchase).filter(
                or_(
                    Purchase.paymentID == payment.paymentID,
                    Purchase.txHash == txHash
                ),
                Purchase.status != PurchaseStatus.CANCELLED_DUPLICATE.value
            ).order_by(Purchase.purchaseID).first()

            if not purchase:
                logger.warning(
                    f"Payment {payment.paymentID} for {txHash}/{network} has no purchase, "
                    f"admitting for settlement"
                )
                return AdmissionResult(alreadyProcessed=False, paymentId=payment.paymentID)

            logger.info(f"Transaction {txHash}/{network} already processed: purchase {purchase.purchaseID}")

            return AdmissionResult(
                alreadyProcessed=True,
                paymentId=payment.paymentID,
                purchaseId=purchase.purchaseID,
                processedAt=payment.completedAt or payment.verifiedAt
            )
