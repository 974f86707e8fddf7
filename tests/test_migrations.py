"""
Tests for the data migration runner.

Tests cover:
1. Pending migrations applied once and recorded
2. Each data fix on its own
3. Dry run and forced re-run
"""

from decimal import Decimal

from models import Payment, Purchase, SchemaMigration
from migrator import MigrationRunner, mark_duplicate_purchases

from conftest import NETWORK, NOW, TX_HASH


def addPayment(sessionFactory, userId, status, verifiedAt=NOW):
    with sessionFactory() as s, s.begin():
        payment = Payment(
            userID=userId,
            txHash=TX_HASH,
            network=NETWORK,
            amount=Decimal("100.00"),
            status=status,
            verifiedAt=verifiedAt,
            createdAt=NOW
        )
        s.add(payment)
        s.flush()
        return payment.paymentID


class TestMigrationRunner:

    def test_applies_all_once(self, session, seed, ledger):
        runner = MigrationRunner(session)

        applied = runner.run()
        again = runner.run()

        assert [m["version"] for m in applied] == [1, 2, 3]
        assert again == []
        assert ledger.count(SchemaMigration) == 3

    def test_dry_run_records_nothing(self, sessionFactory, session, seed, ledger):
        paymentId = addPayment(sessionFactory, seed.buyerId, "verified")

        results = MigrationRunner(session).run(dry_run=True)

        assert all(r["dryRun"] for r in results)
        assert ledger.count(SchemaMigration) == 0
        assert ledger.get(Payment, paymentId).status == "verified"

    def test_forced_rerun_changes_nothing_new(self, session, seed, ledger):
        runner = MigrationRunner(session)
        runner.run()

        results = runner.run(force=True)

        assert len(results) == 3
        assert results[0]["updated"] == 0
        assert ledger.count(SchemaMigration) == 3


class TestDataFixes:

    def test_verified_payments_normalized(self, sessionFactory, session, seed, ledger):
        paymentId = addPayment(sessionFactory, seed.buyerId, "verified")

        results = MigrationRunner(session).run()

        assert results[0]["updated"] == 1
        payment = ledger.get(Payment, paymentId)
        assert payment.status == "completed"
        assert payment.completedAt is not None

    def test_duplicate_purchases_marked(self, sessionFactory, session, seed, makePurchase, ledger):
        paymentId = addPayment(sessionFactory, seed.buyerId, "completed")
        orphanId = makePurchase(txHash=TX_HASH)
        linkedId = makePurchase(txHash=TX_HASH, paymentId=paymentId)

        with session.begin():
            result = mark_duplicate_purchases(session)

        assert result == {"groups": 1, "marked": 1}
        orphan = ledger.get(Purchase, orphanId)
        assert orphan.status == "cancelled_duplicate"
        assert orphan.canonicalID == linkedId
        assert ledger.get(Purchase, linkedId).status == "paid"

    def test_first_cycle_flags_backfilled(self, session, seed, makePurchase, addBenefits, ledger):
        doneId = makePurchase()
        addBenefits(doneId, seed.buyerId, range(1, 9))
        partialId = makePurchase()
        addBenefits(partialId, seed.buyerId, range(1, 5))

        results = MigrationRunner(session).run()

        assert results[2]["updated"] == 1
        assert ledger.get(Purchase, doneId).firstCycleCompleted is True
        assert ledger.get(Purchase, partialId).firstCycleCompleted is False
