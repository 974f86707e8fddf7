# settlement_system/services/accrual_service.py
"""
Daily benefit accrual with 8-day cycles and a pause day.
Commissions are requested after the accrual unit commits.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union
from sqlalchemy.orm import Session
import logging

import config
from models import BenefitEvent, Package, Purchase
from settlement_system.config.rates import (
    BenefitKind, BenefitStatus, DAYS_PER_CYCLE, PAID_PURCHASE_STATUSES, PurchaseStatus
)
from settlement_system.errors import BenefitEventNotFound, PackageNotFound
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.services.commission_service import CommissionService, DistributionResult
from settlement_system.store.ledger_store import insertIfAbsent, unitOfWork
from settlement_system.store.queries import countCompletedBenefits
from settlement_system.utils.benefit_calculator import (
    benefitDay, calculateBenefitAmount, cyclePosition, quantizeAmount, resolveCyclesTotal, resolveRate
)
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class AccrualStatus(Enum):
    ACCRUED = "accrued"
    ALREADY_ACCRUED = "already_accrued"
    PAUSE_DAY = "pause_day"
    NOT_DUE = "not_due"
    CYCLES_EXHAUSTED = "cycles_exhausted"
    NOT_ELIGIBLE = "not_eligible"


@dataclass
class BenefitResult:
    status: AccrualStatus
    purchaseId: Optional[int] = None
    day: Optional[int] = None
    cycleNumber: Optional[int] = None
    dayInCycle: Optional[int] = None
    rate: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    event: Optional[BenefitEvent] = None
    cycleCompleted: bool = False
    firstCycleCompletedNow: bool = False
    distribution: Optional[DistributionResult] = None

    @property
    def created(self) -> bool:
        return self.status == AccrualStatus.ACCRUED


def activationDate(purchase: Purchase) -> date:
    """Benefits count from the day the purchase was paid."""
    activatedAt = purchase.paidAt or purchase.createdAt
    return activatedAt.date()


def _packageIdOf(package: Union[Package, Mapping, None]) -> Optional[int]:
    if package is None:
        return None
    if isinstance(package, Mapping):
        return package.get("packageID") or package.get("packageId")
    return package.packageID


class BenefitAccrualService:
    """Service for daily benefit accrual."""

    def __init__(
            self,
            session: Session,
            commissionService: Optional[CommissionService] = None,
            timeoutSeconds: Optional[float] = None
    ):
        self.session = session
        self.commissionService = commissionService or CommissionService(session)
        self.timeoutSeconds = timeoutSeconds or config.STORE_TIMEOUT_SECONDS

    async def calculateDailyBenefits(
            self,
            userId: int,
            package: Union[Package, Mapping, None],
            options: Optional[Dict[str, Any]] = None
    ) -> BenefitResult:
        """
        Accrue the benefit for one purchase day.

        options:
            purchaseId - purchase to accrue, default is the user's latest paid purchase of package
            rate - overrides the configured daily rate
            day - absolute benefit day (1 is the day after payment)
            asOf - date to derive the day from, default is today

        Same (purchase, day) twice creates one BenefitEvent.
        """
        options = dict(options or {})

        with unitOfWork(self.session, "accrual.loadPurchase", (userId, options.get("purchaseId"))):
            packageId = _packageIdOf(package)
            purchase = self._findPurchase(userId, packageId, options.get("purchaseId"))
            if purchase and (package is None or isinstance(package, Package)):
                package = self.session.get(Package, purchase.packageID, populate_existing=True)

        if not purchase:
            logger.info(f"No paid purchase for user {userId}, package {packageId}")
            return BenefitResult(status=AccrualStatus.NOT_ELIGIBLE)

        if purchase.status not in PAID_PURCHASE_STATUSES:
            logger.info(f"Purchase {purchase.purchaseID} has status {purchase.status}, no benefits")
            return BenefitResult(status=AccrualStatus.NOT_ELIGIBLE, purchaseId=purchase.purchaseID)

        rate = resolveRate(options, package)
        activated = activationDate(purchase)

        day = options.get("day")
        if day is None:
            day = benefitDay(activated, options.get("asOf") or timeMachine.today)

        if day < 1:
            return BenefitResult(status=AccrualStatus.NOT_DUE, purchaseId=purchase.purchaseID, day=day)

        position = cyclePosition(day)
        result = BenefitResult(
            status=AccrualStatus.PAUSE_DAY,
            purchaseId=purchase.purchaseID,
            day=day,
            cycleNumber=position.cycleNumber,
            dayInCycle=position.dayInCycle,
            rate=rate
        )

        if position.isPauseDay:
            logger.debug(f"Purchase {purchase.purchaseID} day {day} is a pause day")
            return result

        if position.cycleNumber > resolveCyclesTotal(package):
            result.status = AccrualStatus.CYCLES_EXHAUSTED
            return result

        baseAmount = Decimal(str(purchase.amount))
        result.amount = calculateBenefitAmount(baseAmount, rate)
        key = (purchase.purchaseID, position.cycleNumber, position.dayInCycle)

        with unitOfWork(self.session, "accrual.calculateDailyBenefits", key, timeoutSeconds=self.timeoutSeconds):
            self._lockPurchase(purchase.purchaseID)

            event, created = insertIfAbsent(
                self.session,
                BenefitEvent,
                {
                    "purchaseID": purchase.purchaseID,
                    "kind": BenefitKind.DAILY_BENEFIT.value,
                    "cycleNumber": position.cycleNumber,
                    "dayInCycle": position.dayInCycle
                },
                {
                    "userID": purchase.userID,
                    "benefitDate": activated + timedelta(days=day),
                    "baseAmount": baseAmount,
                    "rate": float(rate),
                    "amount": result.amount,
                    "currency": purchase.currency,
                    "status": BenefitStatus.COMPLETED.value,
                    "createdAt": timeMachine.now
                }
            )

            cycleCount = countCompletedBenefits(self.session, purchase.purchaseID, position.cycleNumber)
            result.cycleCompleted = cycleCount >= DAYS_PER_CYCLE

            if countCompletedBenefits(self.session, purchase.purchaseID) >= DAYS_PER_CYCLE:
                result.firstCycleCompletedNow = self._markFirstCycleCompleted(purchase.purchaseID)

            if result.cycleCompleted and position.cycleNumber >= resolveCyclesTotal(package):
                self._markPurchaseCompleted(purchase.purchaseID)

        result.event = event
        result.status = AccrualStatus.ACCRUED if created else AccrualStatus.ALREADY_ACCRUED

        if created:
            logger.info(
                f"Benefit {result.amount} for purchase {purchase.purchaseID}: "
                f"cycle {position.cycleNumber}, day {position.dayInCycle}, rate {rate}"
            )
            await eventBus.emit(SettlementEvents.BENEFIT_ACCRUED, {
                "transactionId": event.transactionID,
                "purchaseId": purchase.purchaseID,
                "userId": purchase.userID,
                "cycleNumber": position.cycleNumber,
                "dayInCycle": position.dayInCycle,
                "amount": result.amount
            })
        else:
            logger.debug(f"Benefit for {key} already accrued as {event.transactionID}")

        if result.firstCycleCompletedNow:
            logger.info(f"First cycle completed for purchase {purchase.purchaseID}")
            await eventBus.emit(SettlementEvents.FIRST_CYCLE_COMPLETED, {
                "purchaseId": purchase.purchaseID,
                "userId": purchase.userID
            })

        if result.cycleCompleted and created:
            await eventBus.emit(SettlementEvents.CYCLE_COMPLETED, {
                "purchaseId": purchase.purchaseID,
                "userId": purchase.userID,
                "cycleNumber": position.cycleNumber
            })

        # Replays reach here too, distribution is keyed and pays only once
        if result.cycleCompleted:
            result.distribution = await self.commissionService.distribute(
                purchase.purchaseID,
                position.cycleNumber
            )
        elif result.firstCycleCompletedNow:
            # Eighth benefit landed outside a complete cycle, no pool bonus yet
            await self.commissionService.processDirectReferral(purchase.purchaseID)

        return result

    async def processDailyBenefitsForAllPurchases(
            self,
            asOf: Optional[date] = None,
            catchUp: bool = True
    ) -> Dict:
        """
        Accrue benefits for every paid purchase up to asOf.
        With catchUp every missed day is accrued, otherwise only asOf.
        A failing purchase is logged and reported, the rest continue.
        """
        asOf = asOf or timeMachine.today

        with unitOfWork(self.session, "accrual.loadEligible", asOf):
            eligible = [
                (purchase.purchaseID, purchase.userID, purchase.packageID, activationDate(purchase))
                for purchase in self.session.query(Purchase).filter(
                    Purchase.status == PurchaseStatus.PAID.value
                ).order_by(Purchase.purchaseID).all()
            ]

            packageIds = {packageId for _, _, packageId, _ in eligible}
            knownPackageIds = {
                row[0] for row in self.session.query(Package.packageID).filter(Package.packageID.in_(packageIds)).all()
            } if packageIds else set()

        results = {
            "processed": 0,
            "skipped": 0,
            "errors": 0,
            "details": {
                "successful": [],
                "skippedReasons": [],
                "errorDetails": []
            }
        }

        # Plain values only: a rolled back unit expires every loaded row
        for purchaseId, userId, packageId, activated in eligible:
            try:
                if packageId not in knownPackageIds:
                    raise PackageNotFound(f"Package {packageId} not found")

                currentDay = benefitDay(activated, asOf)
                days = range(1, currentDay + 1) if catchUp else [currentDay]

                accrued = 0
                lastStatus = AccrualStatus.NOT_DUE
                for day in days:
                    if day < 1:
                        continue

                    result = await self.calculateDailyBenefits(
                        userId,
                        None,
                        {"purchaseId": purchaseId, "day": day}
                    )
                    lastStatus = result.status

                    if result.created:
                        accrued += 1
                    elif result.status in (AccrualStatus.CYCLES_EXHAUSTED, AccrualStatus.NOT_ELIGIBLE):
                        break

                if accrued:
                    results["processed"] += 1
                    results["details"]["successful"].append({
                        "purchaseId": purchaseId,
                        "userId": userId,
                        "daysAccrued": accrued
                    })
                else:
                    results["skipped"] += 1
                    results["details"]["skippedReasons"].append({
                        "purchaseId": purchaseId,
                        "reason": lastStatus.value
                    })

            except Exception as e:
                logger.error(f"Error processing benefits for purchase {purchaseId}: {e}", exc_info=True)
                results["errors"] += 1
                results["details"]["errorDetails"].append({
                    "purchaseId": purchaseId,
                    "error": str(e)
                })

        logger.info(
            f"Daily benefits as of {asOf}: processed {results['processed']}, "
            f"skipped {results['skipped']}, errors {results['errors']}"
        )

        return results

    async def recordCompensation(self, transactionId: int, amount, reason: str) -> BenefitEvent:
        """
        Correct an accrued benefit with a compensating event.
        The original event is never edited. One compensation per benefit event.
        """
        if not reason:
            raise ValueError("Compensation reason is required")

        amount = quantizeAmount(amount)

        with unitOfWork(self.session, "accrual.recordCompensation", transactionId, timeoutSeconds=self.timeoutSeconds):
            original = self.session.get(BenefitEvent, transactionId)
            if not original or original.kind != BenefitKind.DAILY_BENEFIT.value:
                raise BenefitEventNotFound(f"Benefit event {transactionId} not found")

            compensation, created = insertIfAbsent(
                self.session,
                BenefitEvent,
                {
                    "purchaseID": original.purchaseID,
                    "kind": BenefitKind.COMPENSATION.value,
                    "cycleNumber": original.cycleNumber,
                    "dayInCycle": original.dayInCycle
                },
                {
                    "userID": original.userID,
                    "compensatesID": original.transactionID,
                    "benefitDate": original.benefitDate,
                    "baseAmount": original.baseAmount,
                    "rate": original.rate,
                    "amount": amount,
                    "currency": original.currency,
                    "status": BenefitStatus.COMPLETED.value,
                    "notes": reason,
                    "createdAt": timeMachine.now
                }
            )

        if not created:
            logger.warning(
                f"Benefit event {transactionId} already compensated by {compensation.transactionID}"
            )
            return compensation

        logger.info(f"Compensation {amount} recorded for benefit event {transactionId}: {reason}")

        await eventBus.emit(SettlementEvents.BENEFIT_COMPENSATED, {
            "transactionId": compensation.transactionID,
            "compensatesId": transactionId,
            "purchaseId": compensation.purchaseID,
            "amount": amount,
            "reason": reason
        })

        return compensation

    def _findPurchase(self, userId: int, packageId: Optional[int], purchaseId: Optional[int]) -> Optional[Purchase]:
        if purchaseId:
            purchase = self.session.get(Purchase, purchaseId, populate_existing=True)
            if purchase and purchase.userID != userId:
                logger.warning(f"Purchase {purchaseId} does not belong to user {userId}")
                return None
            return purchase

        if packageId is None:
            return None

        return self.session.query(Purchase).populate_existing().filter(
            Purchase.userID == userId,
            Purchase.packageID == packageId,
            Purchase.status.in_(PAID_PURCHASE_STATUSES)
        ).order_by(Purchase.createdAt.desc(), Purchase.purchaseID.desc()).first()

    def _lockPurchase(self, purchaseId: int) -> Purchase:
        """
        Row lock on the purchase for the rest of the unit. Accruals for one
        purchase run one after another, so the cycle counts below see every
        benefit committed before them.
        """
        return self.session.query(Purchase).filter(
            Purchase.purchaseID == purchaseId
        ).with_for_update().one()

    def _markFirstCycleCompleted(self, purchaseId: int) -> bool:
        """Conditional flip. True only for the call that changed the flag."""
        updated = self.session.query(Purchase).filter(
            Purchase.purchaseID == purchaseId,
            Purchase.firstCycleCompleted == False  # noqa: E712
        ).update({Purchase.firstCycleCompleted: True}, synchronize_session="fetch")

        return updated == 1

    def _markPurchaseCompleted(self, purchaseId: int):
        updated = self.session.query(Purchase).filter(
            Purchase.purchaseID == purchaseId,
            Purchase.status == PurchaseStatus.PAID.value
        ).update({Purchase.status: PurchaseStatus.COMPLETED.value}, synchronize_session="fetch")

        if updated:
            logger.info(f"Purchase {purchaseId} completed all benefit cycles")
