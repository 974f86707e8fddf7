"""
Tests for the idempotency gate.

Tests cover:
1. Unknown references are admitted
2. Settled references are refused with the prior outcome
3. Legacy 'verified' payments count as processed
4. A payment without a live purchase is admitted again
5. Input validation and store failures
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from models import Payment
from settlement_system.errors import TransientStoreFailure
from settlement_system.services.idempotency_gate import IdempotencyGate
from settlement_system.services.settlement_service import PaymentEvent, SettlementService

from conftest import NETWORK, NOW, TX_HASH


def addPayment(sessionFactory, userId, status, txHash=TX_HASH, network=NETWORK):
    with sessionFactory() as s, s.begin():
        payment = Payment(
            userID=userId,
            txHash=txHash,
            network=network,
            amount=Decimal("100.00"),
            status=status,
            verifiedAt=NOW,
            createdAt=NOW
        )
        s.add(payment)
        s.flush()
        return payment.paymentID


class TestAdmission:

    def test_unknown_reference_is_admitted(self, session, seed):
        result = asyncio.run(IdempotencyGate(session).admit(TX_HASH, NETWORK))

        assert result.alreadyProcessed is False
        assert result.purchaseId is None

    def test_settled_reference_is_refused(self, session, seed):
        event = PaymentEvent(
            txHash=TX_HASH,
            network=NETWORK,
            userId=seed.buyerId,
            packageId=seed.packageId,
            amount=Decimal("100")
        )
        settled = asyncio.run(SettlementService(session).settle(event))

        result = asyncio.run(IdempotencyGate(session).admit(TX_HASH, NETWORK))

        assert result.alreadyProcessed is True
        assert result.paymentId == settled.payment.paymentID
        assert result.purchaseId == settled.purchase.purchaseID
        assert result.processedAt is not None

    def test_same_hash_on_other_network_is_admitted(self, session, seed):
        event = PaymentEvent(
            txHash=TX_HASH,
            network=NETWORK,
            userId=seed.buyerId,
            packageId=seed.packageId,
            amount=Decimal("100")
        )
        asyncio.run(SettlementService(session).settle(event))

        result = asyncio.run(IdempotencyGate(session).admit(TX_HASH, "TRC20"))

        assert result.alreadyProcessed is False

    def test_legacy_verified_payment_counts(self, sessionFactory, session, seed, makePurchase):
        paymentId = addPayment(sessionFactory, seed.buyerId, "verified")
        purchaseId = makePurchase(txHash=TX_HASH, paymentId=paymentId)

        result = asyncio.run(IdempotencyGate(session).admit(TX_HASH, NETWORK))

        assert result.alreadyProcessed is True
        assert result.purchaseId == purchaseId

    def test_pending_payment_is_admitted(self, sessionFactory, session, seed):
        addPayment(sessionFactory, seed.buyerId, "pending")

        result = asyncio.run(IdempotencyGate(session).admit(TX_HASH, NETWORK))

        assert result.alreadyProcessed is False

    def test_payment_without_live_purchase_is_admitted(self, sessionFactory, session, seed, makePurchase):
        paymentId = addPayment(sessionFactory, seed.buyerId, "completed")
        makePurchase(txHash=TX_HASH, paymentId=paymentId, status="cancelled_duplicate")

        result = asyncio.run(IdempotencyGate(session).admit(TX_HASH, NETWORK))

        assert result.alreadyProcessed is False
        assert result.paymentId == paymentId


class TestGateErrors:

    @pytest.mark.parametrize("txHash,network", [("", NETWORK), (TX_HASH, ""), (None, NETWORK)])
    def test_missing_reference(self, session, txHash, network):
        with pytest.raises(ValueError):
            asyncio.run(IdempotencyGate(session).admit(txHash, network))

    def test_store_failure_is_not_an_admission(self, session, monkeypatch):
        def lockedQuery(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "query", lockedQuery)

        with pytest.raises(TransientStoreFailure):
            asyncio.run(IdempotencyGate(session).admit(TX_HASH, NETWORK))
