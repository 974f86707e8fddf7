# settlement_system/store/queries.py
"""
Shared ledger queries.
"""
from typing import Optional
from sqlalchemy.orm import Session

from models import BenefitEvent
from settlement_system.config.rates import BenefitKind, BenefitStatus


def countCompletedBenefits(session: Session, purchaseId: int, cycleNumber: Optional[int] = None) -> int:
    """Completed daily benefits of a purchase, optionally for one cycle. Compensations are not counted."""
    query = session.query(BenefitEvent).filter(
        BenefitEvent.purchaseID == purchaseId,
        BenefitEvent.kind == BenefitKind.DAILY_BENEFIT.value,
        BenefitEvent.status == BenefitStatus.COMPLETED.value
    )
    if cycleNumber is not None:
        query = query.filter(BenefitEvent.cycleNumber == cycleNumber)

    return query.count()
