# models/benefit_event.py
"""
BenefitEvent model - one daily accrual (or a compensating correction) for a purchase.
Rows are never edited after insert.
"""
from sqlalchemy import Column, Integer, String, Float, DECIMAL, Date, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class BenefitEvent(Base, AuditMixin):
    __tablename__ = 'benefit_events'
    __table_args__ = (
        UniqueConstraint('purchaseID', 'kind', 'cycleNumber', 'dayInCycle', name='uq_benefit_purchase_day'),
    )

    transactionID = Column(Integer, primary_key=True, autoincrement=True)

    purchaseID = Column(Integer, ForeignKey('purchases.purchaseID'), nullable=False, index=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    kind = Column(String, nullable=False, default="daily_benefit")  # daily_benefit, compensation
    compensatesID = Column(Integer, ForeignKey('benefit_events.transactionID'), nullable=True)

    # Position in the cycle
    cycleNumber = Column(Integer, nullable=False)
    dayInCycle = Column(Integer, nullable=False)  # 1..8
    benefitDate = Column(Date, nullable=True)

    # Calculation
    baseAmount = Column(DECIMAL(12, 2), nullable=False)
    rate = Column(Float, nullable=False)
    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String, default="USDT")

    status = Column(String, default="completed", index=True)  # pending, completed, failed
    notes = Column(Text, nullable=True)

    purchase = relationship('Purchase', back_populates='benefitEvents')

    def __repr__(self):
        return (f"<BenefitEvent(id={self.transactionID}, purchase={self.purchaseID}, "
                f"cycle={self.cycleNumber}, day={self.dayInCycle}, amount={self.amount})>")
