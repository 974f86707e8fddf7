import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import BenefitEvent, Payment, Purchase, SchemaMigration
from settlement_system.config.rates import (
    BenefitKind, BenefitStatus, DAYS_PER_CYCLE, INACTIVE_PURCHASE_STATUSES, PaymentStatus, PurchaseStatus
)
from settlement_system.store.ledger_store import unitOfWork
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    version: int
    name: str
    apply: Callable[[Session], Dict]


def normalize_verified_payments(session: Session) -> Dict:
    """Старые потоки писали 'verified', приводим к 'completed'"""
    updated = session.query(Payment).filter(
        Payment.status == PaymentStatus.VERIFIED.value
    ).update({
        Payment.status: PaymentStatus.COMPLETED.value,
        Payment.completedAt: func.coalesce(Payment.completedAt, Payment.verifiedAt)
    }, synchronize_session=False)

    return {"updated": updated}


def mark_duplicate_purchases(session: Session) -> Dict:
    """Несколько живых покупок на один txHash: оставляем привязанную к платежу или самую раннюю"""
    tx_hashes = [
        row[0] for row in session.query(Purchase.txHash).filter(
            Purchase.txHash.isnot(None),
            Purchase.status.notin_(INACTIVE_PURCHASE_STATUSES)
        ).group_by(Purchase.txHash).having(func.count(Purchase.purchaseID) > 1).all()
    ]

    marked = 0
    now = timeMachine.now

    for tx_hash in tx_hashes:
        purchases = session.query(Purchase).filter(
            Purchase.txHash == tx_hash,
            Purchase.status.notin_(INACTIVE_PURCHASE_STATUSES)
        ).order_by(Purchase.purchaseID).all()

        canonical = next((p for p in purchases if p.paymentID), purchases[0])

        for purchase in purchases:
            if purchase.purchaseID == canonical.purchaseID:
                continue
            purchase.status = PurchaseStatus.CANCELLED_DUPLICATE.value
            purchase.cancelledAt = now
            purchase.canonicalID = canonical.purchaseID
            purchase.notes = {
                **(purchase.notes or {}),
                "cancelReason": "duplicate_detected_by_migration",
                "cancelledBy": "migration"
            }
            marked += 1

    session.flush()
    return {"groups": len(tx_hashes), "marked": marked}


def backfill_first_cycle_flags(session: Session) -> Dict:
    """Флаг для покупок, у которых уже есть 8 начислений"""
    purchase_ids = [
        row[0] for row in session.query(BenefitEvent.purchaseID).filter(
            BenefitEvent.kind == BenefitKind.DAILY_BENEFIT.value,
            BenefitEvent.status == BenefitStatus.COMPLETED.value
        ).group_by(BenefitEvent.purchaseID).having(
            func.count(BenefitEvent.transactionID) >= DAYS_PER_CYCLE
        ).all()
    ]

    if not purchase_ids:
        return {"updated": 0}

    updated = session.query(Purchase).filter(
        Purchase.firstCycleCompleted == False,  # noqa: E712
        Purchase.purchaseID.in_(purchase_ids)
    ).update({Purchase.firstCycleCompleted: True}, synchronize_session=False)

    return {"updated": updated}


MIGRATIONS = [
    Migration(1, "normalize_verified_payments", normalize_verified_payments),
    Migration(2, "mark_duplicate_purchases", mark_duplicate_purchases),
    Migration(3, "backfill_first_cycle_flags", backfill_first_cycle_flags),
]


class MigrationRunner:
    """
    Versioned data migrations. Each migration runs in its own transaction and
    is recorded in schema_migrations. All of them are safe to apply again.
    """

    def __init__(self, session: Session, migrations: Optional[List[Migration]] = None):
        self.session = session
        self.migrations = sorted(migrations or MIGRATIONS, key=lambda m: m.version)

    def applied_versions(self) -> Dict[int, SchemaMigration]:
        with unitOfWork(self.session, "migrations.applied"):
            return {record.version: record for record in self.session.query(SchemaMigration).all()}

    def pending(self) -> List[Migration]:
        applied = self.applied_versions()
        return [migration for migration in self.migrations if migration.version not in applied]

    def run(self, dry_run: bool = False, force: bool = False) -> List[Dict]:
        """
        Применяет ожидающие миграции.
        force=True применяет все миграции повторно
        """
        to_apply = self.migrations if force else self.pending()
        results = []

        if not to_apply:
            logger.info("Database is up to date")
            return results

        for migration in to_apply:
            if dry_run:
                logger.info(f"[dry run] would apply {migration.version:04d}_{migration.name}")
                results.append({"version": migration.version, "name": migration.name, "dryRun": True})
                continue

            with unitOfWork(self.session, "migrations.apply", migration.version):
                result = migration.apply(self.session)
                record = self.session.get(SchemaMigration, migration.version)
                if record is None:
                    record = SchemaMigration(version=migration.version, name=migration.name)
                    self.session.add(record)
                record.appliedAt = timeMachine.now
                record.result = json.dumps(result)

            logger.info(f"Applied migration {migration.version:04d}_{migration.name}: {result}")
            results.append({"version": migration.version, "name": migration.name, **result})

        return results
