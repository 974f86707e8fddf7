"""
Shared fixtures: a file-backed SQLite ledger per test, seeded users and
packages, and virtual time pinned to NOW.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from models import Base, BenefitEvent, Package, Purchase, User
from settlement_system.events.event_bus import eventBus
from settlement_system.store.ledger_store import createLedgerEngine, createSessionFactory
from settlement_system.utils.time_machine import timeMachine


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
TX_HASH = "0x" + "ab" * 32
NETWORK = "BEP20"


@pytest.fixture(autouse=True)
def virtualTime():
    timeMachine.setTime(NOW)
    eventBus.clear()
    yield timeMachine
    timeMachine.resetToRealTime()
    eventBus.clear()


@pytest.fixture
def engine(tmp_path):
    engine = createLedgerEngine(f"sqlite:///{tmp_path / 'ledger.db'}", timeoutSeconds=5)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessionFactory(engine):
    return createSessionFactory(engine)


@pytest.fixture
def session(sessionFactory):
    with sessionFactory() as session:
        yield session


@pytest.fixture
def seed(sessionFactory):
    """admin, sponsor -> buyer, loner; a configured and a legacy package."""
    with sessionFactory() as s, s.begin():
        admin = User(email="admin@example.com", role="admin", createdAt=NOW)
        sponsor = User(email="sponsor@example.com", createdAt=NOW)
        s.add_all([admin, sponsor])
        s.flush()

        buyer = User(email="buyer@example.com", referredBy=sponsor.userID, createdAt=NOW)
        loner = User(email="loner@example.com", createdAt=NOW)
        starter = Package(
            name="Starter",
            price=Decimal("100.00"),
            benefitConfig={"dailyRate": 0.125, "totalDays": 40},
            createdAt=NOW
        )
        legacy = Package(name="Legacy", price=Decimal("200.00"), createdAt=NOW)
        s.add_all([buyer, loner, starter, legacy])
        s.flush()

        return SimpleNamespace(
            adminId=admin.userID,
            sponsorId=sponsor.userID,
            buyerId=buyer.userID,
            lonerId=loner.userID,
            packageId=starter.packageID,
            legacyPackageId=legacy.packageID
        )


@pytest.fixture
def makePurchase(sessionFactory, seed):
    def _make(userId=None, packageId=None, status="paid", amount=Decimal("100.00"),
              txHash=None, paymentId=None, createdAt=NOW, paidAt=NOW, firstCycleCompleted=False):
        with sessionFactory() as s, s.begin():
            purchase = Purchase(
                userID=userId or seed.buyerId,
                packageID=packageId or seed.packageId,
                paymentID=paymentId,
                amount=amount,
                currency="USDT",
                status=status,
                txHash=txHash,
                firstCycleCompleted=firstCycleCompleted,
                createdAt=createdAt,
                paidAt=paidAt if status in ("paid", "completed") else None
            )
            s.add(purchase)
            s.flush()
            return purchase.purchaseID

    return _make


@pytest.fixture
def addBenefits(sessionFactory):
    """Insert completed daily benefit rows directly, bypassing the accrual engine."""
    def _add(purchaseId, userId, days, cycleNumber=1, amount=Decimal("12.50")):
        with sessionFactory() as s, s.begin():
            for dayInCycle in days:
                s.add(BenefitEvent(
                    purchaseID=purchaseId,
                    userID=userId,
                    kind="daily_benefit",
                    cycleNumber=cycleNumber,
                    dayInCycle=dayInCycle,
                    baseAmount=Decimal("100.00"),
                    rate=0.125,
                    amount=amount,
                    status="completed",
                    createdAt=NOW
                ))

    return _add


@pytest.fixture
def ledger(sessionFactory):
    """Reads committed state through a fresh session."""
    class Ledger:
        def count(self, model, **filters):
            with sessionFactory() as s:
                return s.query(model).filter_by(**filters).count()

        def all(self, model, **filters):
            with sessionFactory() as s:
                return s.query(model).filter_by(**filters).all()

        def get(self, model, ident):
            with sessionFactory() as s:
                return s.get(model, ident)

    return Ledger()


def daysAgo(days: int) -> datetime:
    return NOW - timedelta(days=days)
