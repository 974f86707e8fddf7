"""
Tests for commission distribution.

Tests cover:
1. Pool bonus idempotence per (purchase, cycle)
2. Direct referral preconditions and single payout
3. Sponsor change after payout
4. Pool admin resolution
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from models import Commission, Purchase, User
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.services.commission_service import CommissionService


class TestPoolBonus:

    def test_second_call_for_same_cycle_creates_nothing(self, session, seed, makePurchase, ledger):
        purchaseId = makePurchase()
        service = CommissionService(session)

        first = asyncio.run(service.processPoolBonus(
            purchaseId=purchaseId, cycleNumber=2, adminId=seed.adminId, userId=seed.buyerId, baseAmount=Decimal("100")
        ))
        assert ledger.count(Commission, commissionType="pool_bonus", purchaseID=purchaseId, cycleNumber=2) == 1

        second = asyncio.run(service.processPoolBonus(
            purchaseId=purchaseId, cycleNumber=2, adminId=seed.adminId, userId=seed.buyerId, baseAmount=Decimal("100")
        ))
        assert ledger.count(Commission, commissionType="pool_bonus", purchaseID=purchaseId, cycleNumber=2) == 1

        assert first.isNew is True
        assert second.isNew is False
        assert second.commission.commissionID == first.commission.commissionID

        stored = ledger.get(Commission, first.commission.commissionID)
        assert stored.amount == Decimal("5.00")
        assert stored.userID == seed.adminId
        assert stored.fromUserID == seed.buyerId
        assert stored.details["cycleNumber"] == 2
        assert stored.details["percentage"] == 5

    def test_each_cycle_pays_once(self, session, seed, makePurchase, ledger):
        purchaseId = makePurchase()
        service = CommissionService(session)

        for cycleNumber in (1, 2, 2, 3):
            asyncio.run(service.processPoolBonus(purchaseId, cycleNumber, seed.adminId, seed.buyerId, Decimal("100")))

        assert ledger.count(Commission, commissionType="pool_bonus", purchaseID=purchaseId) == 3

    @pytest.mark.parametrize("missing", ["purchaseId", "cycleNumber", "adminId", "userId", "baseAmount"])
    def test_missing_parameters(self, session, missing):
        params = {"purchaseId": 1, "cycleNumber": 1, "adminId": 1, "userId": 2, "baseAmount": Decimal("100")}
        params[missing] = None

        with pytest.raises(ValueError):
            asyncio.run(CommissionService(session).processPoolBonus(**params))


class TestDirectReferral:

    def test_not_paid_before_first_cycle(self, session, seed, makePurchase, addBenefits, ledger):
        purchaseId = makePurchase()
        addBenefits(purchaseId, seed.buyerId, range(1, 9))

        outcome = asyncio.run(CommissionService(session).processDirectReferral(purchaseId))

        assert outcome is None
        assert ledger.count(Commission) == 0

    def test_flag_without_eight_benefits_is_not_enough(self, session, seed, makePurchase, addBenefits, ledger):
        purchaseId = makePurchase(firstCycleCompleted=True)
        addBenefits(purchaseId, seed.buyerId, range(1, 8))

        outcome = asyncio.run(CommissionService(session).processDirectReferral(purchaseId))

        assert outcome is None
        assert ledger.count(Commission) == 0

    def test_paid_once_to_sponsor(self, session, seed, makePurchase, addBenefits, ledger):
        purchaseId = makePurchase(firstCycleCompleted=True)
        addBenefits(purchaseId, seed.buyerId, range(1, 9))
        service = CommissionService(session)

        first = asyncio.run(service.processDirectReferral(purchaseId))
        second = asyncio.run(service.processDirectReferral(purchaseId))

        assert first.isNew is True
        assert second.isNew is False
        assert ledger.count(Commission, commissionType="direct_referral") == 1

        stored = ledger.get(Commission, first.commission.commissionID)
        assert stored.userID == seed.sponsorId
        assert stored.fromUserID == seed.buyerId
        assert stored.amount == Decimal("10.00")
        assert stored.cycleNumber == 1
        assert stored.details["percentage"] == 10
        assert stored.details["baseAmount"] == 100
        assert stored.details["paymentTrigger"] == "first_cycle_completion"

    def test_no_sponsor(self, session, seed, makePurchase, addBenefits, ledger):
        purchaseId = makePurchase(userId=seed.lonerId, firstCycleCompleted=True)
        addBenefits(purchaseId, seed.lonerId, range(1, 9))

        assert asyncio.run(CommissionService(session).processDirectReferral(purchaseId)) is None
        assert ledger.count(Commission) == 0

    def test_cancelled_purchase(self, session, seed, makePurchase, addBenefits):
        purchaseId = makePurchase(status="cancelled", firstCycleCompleted=True)
        addBenefits(purchaseId, seed.buyerId, range(1, 9))

        assert asyncio.run(CommissionService(session).processDirectReferral(purchaseId)) is None

    def test_sponsor_change_keeps_original_payout(self, sessionFactory, session, seed, makePurchase,
                                                  addBenefits, ledger, caplog):
        purchaseId = makePurchase(firstCycleCompleted=True)
        addBenefits(purchaseId, seed.buyerId, range(1, 9))
        service = CommissionService(session)
        asyncio.run(service.processDirectReferral(purchaseId))

        with sessionFactory() as s, s.begin():
            s.get(User, seed.buyerId).referredBy = seed.adminId

        with caplog.at_level(logging.WARNING):
            outcome = asyncio.run(service.processDirectReferral(purchaseId))

        assert outcome.isNew is False
        assert outcome.commission.userID == seed.sponsorId
        assert ledger.count(Commission, commissionType="direct_referral") == 1
        assert "keeping the original payout" in caplog.text


class TestDistribute:

    def test_distribute_pays_both_once(self, session, seed, makePurchase, addBenefits, ledger):
        purchaseId = makePurchase(firstCycleCompleted=True)
        addBenefits(purchaseId, seed.buyerId, range(1, 9))
        received = []
        eventBus.subscribe(SettlementEvents.COMMISSION_CREATED, received.append)
        service = CommissionService(session)

        first = asyncio.run(service.distribute(purchaseId, 1))
        second = asyncio.run(service.distribute(purchaseId, 1))

        assert len(first.created) == 2
        assert second.created == []
        assert len(received) == 2
        assert [c.commissionType for c in service.getCommissionsForPurchase(purchaseId)] == [
            "direct_referral", "pool_bonus"
        ]

    def test_cycle_two_distributed_twice(self, session, seed, makePurchase, addBenefits, ledger):
        """Day 17 completes cycle 2, a retried distribution must not pay the pool again."""
        purchaseId = makePurchase(firstCycleCompleted=True)
        addBenefits(purchaseId, seed.buyerId, range(1, 9))
        addBenefits(purchaseId, seed.buyerId, range(1, 9), cycleNumber=2)
        service = CommissionService(session)

        asyncio.run(service.distribute(purchaseId, 2))
        assert ledger.count(Commission, commissionType="pool_bonus", purchaseID=purchaseId, cycleNumber=2) == 1

        asyncio.run(service.distribute(purchaseId, 2))
        assert ledger.count(Commission, commissionType="pool_bonus", purchaseID=purchaseId, cycleNumber=2) == 1

        pool = ledger.all(Commission, commissionType="pool_bonus", purchaseID=purchaseId)[0]
        assert pool.details["cycleNumber"] == 2
        assert pool.details["completionDay"] == 17

    def test_pool_bonus_in_purchase_currency(self, sessionFactory, session, seed, makePurchase, ledger):
        purchaseId = makePurchase()
        with sessionFactory() as s, s.begin():
            s.get(Purchase, purchaseId).currency = "USDC"

        result = asyncio.run(CommissionService(session).distribute(purchaseId, 1))

        assert ledger.get(Commission, result.poolBonus.commission.commissionID).currency == "USDC"

    def test_configured_pool_admin(self, session, seed, makePurchase):
        purchaseId = makePurchase()

        result = asyncio.run(CommissionService(session, poolAdminUserId=seed.lonerId).distribute(purchaseId, 1))

        assert result.directReferral is None
        assert result.poolBonus.commission.userID == seed.lonerId

    def test_no_admin_skips_pool_bonus(self, sessionFactory, session, seed, makePurchase, ledger, monkeypatch):
        monkeypatch.setattr("config.POOL_ADMIN_USER_ID", None)
        with sessionFactory() as s, s.begin():
            s.get(User, seed.adminId).role = "user"
        purchaseId = makePurchase()

        result = asyncio.run(CommissionService(session).distribute(purchaseId, 1))

        assert result.poolBonus is None
        assert ledger.count(Commission) == 0
