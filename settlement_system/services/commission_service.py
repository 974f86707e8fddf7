# settlement_system/services/commission_service.py
"""
Commission distribution - direct referral and pool bonus.
Every payout is keyed by a unique index, replays return the stored row.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

import config
from models import Commission, Purchase, User
from settlement_system.config.rates import (
    CommissionStatus, CommissionType, DAYS_PER_CYCLE, DIRECT_REFERRAL_PERCENTAGE,
    PAID_PURCHASE_STATUSES, POOL_BONUS_PERCENTAGE
)
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.store.ledger_store import insertIfAbsent, unitOfWork
from settlement_system.store.queries import countCompletedBenefits
from settlement_system.utils.benefit_calculator import absoluteDay, quantizeAmount
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


@dataclass
class CommissionOutcome:
    commission: Commission
    isNew: bool


@dataclass
class DistributionResult:
    purchaseId: int
    cycleNumber: int
    directReferral: Optional[CommissionOutcome] = None
    poolBonus: Optional[CommissionOutcome] = None

    @property
    def created(self) -> List[Commission]:
        outcomes = [self.directReferral, self.poolBonus]
        return [outcome.commission for outcome in outcomes if outcome and outcome.isNew]


class CommissionService:
    """Service for distributing commissions on cycle completion."""

    def __init__(self, session: Session, poolAdminUserId: Optional[int] = None):
        self.session = session
        self.poolAdminUserId = poolAdminUserId if poolAdminUserId is not None else config.POOL_ADMIN_USER_ID

    async def distribute(self, purchaseId: int, cycleNumber: int) -> DistributionResult:
        """
        Called after a cycle of the purchase completed.
        Direct referral is attempted each time and pays at most once,
        pool bonus pays at most once per cycle.
        """
        result = DistributionResult(purchaseId=purchaseId, cycleNumber=cycleNumber)

        # 1. Direct referral
        result.directReferral = await self.processDirectReferral(purchaseId)

        # 2. Pool bonus
        with unitOfWork(self.session, "commission.loadPurchase", purchaseId):
            purchase = self.session.get(Purchase, purchaseId, populate_existing=True)
            adminId = self._resolvePoolAdmin()

        if not purchase or purchase.status not in PAID_PURCHASE_STATUSES:
            logger.info(f"Purchase {purchaseId} is not active, pool bonus skipped")
            return result

        if adminId is None:
            logger.warning(f"No pool admin configured, pool bonus for purchase {purchaseId} cycle {cycleNumber} skipped")
            return result

        result.poolBonus = await self.processPoolBonus(
            purchaseId=purchaseId,
            cycleNumber=cycleNumber,
            adminId=adminId,
            userId=purchase.userID,
            baseAmount=purchase.amount,
            currency=purchase.currency
        )

        logger.info(
            f"Distributed commissions for purchase {purchaseId} cycle {cycleNumber}: "
            f"{len(result.created)} new"
        )

        return result

    async def processDirectReferral(self, purchaseId: int) -> Optional[CommissionOutcome]:
        """
        10% of the package price to the purchaser's sponsor, once per purchase,
        after the first cycle is complete.
        Returns None while preconditions are not met.
        """
        with unitOfWork(self.session, "commission.directReferral", purchaseId):
            purchase = self.session.get(Purchase, purchaseId, populate_existing=True)
            if not purchase:
                logger.error(f"Purchase {purchaseId} not found")
                return None

            if purchase.status not in PAID_PURCHASE_STATUSES:
                logger.debug(f"Purchase {purchaseId} status {purchase.status}, no direct referral")
                return None

            if not purchase.firstCycleCompleted:
                logger.debug(f"Purchase {purchaseId} first cycle not completed yet")
                return None

            purchaser = self.session.get(User, purchase.userID, populate_existing=True)
            if not purchaser or not purchaser.referredBy:
                logger.debug(f"Purchaser of {purchaseId} has no sponsor")
                return None

            benefitCount = countCompletedBenefits(self.session, purchaseId)
            if benefitCount < DAYS_PER_CYCLE:
                logger.warning(
                    f"Purchase {purchaseId} flagged first cycle completed "
                    f"with only {benefitCount} benefits, direct referral deferred"
                )
                return None

            existing = self.session.query(Commission).filter_by(
                commissionType=CommissionType.DIRECT_REFERRAL.value,
                fromUserID=purchaser.userID,
                purchaseID=purchaseId
            ).first()

            if existing:
                if existing.userID != purchaser.referredBy:
                    logger.warning(
                        f"Direct referral for purchase {purchaseId} already paid to {existing.userID}, "
                        f"current sponsor is {purchaser.referredBy}, keeping the original payout"
                    )
                return CommissionOutcome(commission=existing, isNew=False)

            baseAmount = Decimal(str(purchase.amount))
            amount = quantizeAmount(baseAmount * DIRECT_REFERRAL_PERCENTAGE)

            commission, created = insertIfAbsent(
                self.session,
                Commission,
                {
                    "commissionType": CommissionType.DIRECT_REFERRAL.value,
                    "fromUserID": purchaser.userID,
                    "purchaseID": purchaseId
                },
                {
                    "userID": purchaser.referredBy,
                    "cycleNumber": 1,
                    "amount": amount,
                    "currency": purchase.currency,
                    "status": CommissionStatus.PENDING.value,
                    "createdAt": timeMachine.now,
                    "details": {
                        "percentage": float(DIRECT_REFERRAL_PERCENTAGE * 100),
                        "baseAmount": float(baseAmount),
                        "cycleNumber": 1,
                        "paymentTrigger": "first_cycle_completion"
                    }
                }
            )

        if created:
            logger.info(f"Direct referral {amount} for sponsor {commission.userID} from purchase {purchaseId}")
            await self._emitCreated(commission)

        return CommissionOutcome(commission=commission, isNew=created)

    async def processPoolBonus(
            self,
            purchaseId: int,
            cycleNumber: int,
            adminId: int,
            userId: int,
            baseAmount,
            currency: Optional[str] = None
    ) -> CommissionOutcome:
        """5% of baseAmount to the pool admin, once per (purchase, cycle)."""
        if not purchaseId or not cycleNumber or not adminId or not userId or baseAmount is None:
            raise ValueError("purchaseId, cycleNumber, adminId, userId and baseAmount are required")

        if cycleNumber < 1:
            raise ValueError(f"cycleNumber must be >= 1, got {cycleNumber}")

        baseAmount = Decimal(str(baseAmount))
        amount = quantizeAmount(baseAmount * POOL_BONUS_PERCENTAGE)

        with unitOfWork(self.session, "commission.poolBonus", (purchaseId, cycleNumber)):
            commission, created = insertIfAbsent(
                self.session,
                Commission,
                {
                    "commissionType": CommissionType.POOL_BONUS.value,
                    "purchaseID": purchaseId,
                    "cycleNumber": cycleNumber
                },
                {
                    "userID": adminId,
                    "fromUserID": userId,
                    "amount": amount,
                    "currency": currency or config.DEFAULT_CURRENCY,
                    "status": CommissionStatus.PENDING.value,
                    "createdAt": timeMachine.now,
                    "details": {
                        "percentage": float(POOL_BONUS_PERCENTAGE * 100),
                        "baseAmount": float(baseAmount),
                        "cycleNumber": cycleNumber,
                        "completionDay": absoluteDay(cycleNumber, DAYS_PER_CYCLE),
                        "paymentTrigger": "cycle_completion"
                    }
                }
            )

        if created:
            logger.info(f"Pool bonus {amount} for purchase {purchaseId} cycle {cycleNumber} to admin {adminId}")
            await self._emitCreated(commission)
        else:
            logger.info(f"Pool bonus for purchase {purchaseId} cycle {cycleNumber} already exists")

        return CommissionOutcome(commission=commission, isNew=created)

    def getCommissionsForPurchase(self, purchaseId: int) -> List[Commission]:
        with unitOfWork(self.session, "commission.list", purchaseId):
            return self.session.query(Commission).filter_by(
                purchaseID=purchaseId
            ).order_by(Commission.commissionID).all()

    def _resolvePoolAdmin(self) -> Optional[int]:
        if self.poolAdminUserId:
            return self.poolAdminUserId

        admin = self.session.query(User).filter_by(role="admin").order_by(User.userID).first()
        return admin.userID if admin else None

    async def _emitCreated(self, commission: Commission):
        await eventBus.emit(SettlementEvents.COMMISSION_CREATED, {
            "commissionId": commission.commissionID,
            "commissionType": commission.commissionType,
            "userId": commission.userID,
            "fromUserId": commission.fromUserID,
            "purchaseId": commission.purchaseID,
            "cycleNumber": commission.cycleNumber,
            "amount": commission.amount
        })
