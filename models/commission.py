# models/commission.py
"""
Commission model - direct referral and pool bonus payouts.
The composite unique keys are the only duplicate-prevention mechanism.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, JSON, UniqueConstraint, Index, text
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Commission(Base, AuditMixin):
    __tablename__ = 'commissions'
    __table_args__ = (
        UniqueConstraint('commissionType', 'userID', 'fromUserID', 'purchaseID', 'cycleNumber',
                         name='uq_commission_key'),
        # Один direct_referral на покупку, независимо от текущего спонсора
        Index('uq_direct_referral_purchase', 'fromUserID', 'purchaseID', unique=True,
              sqlite_where=text("\"commissionType\" = 'direct_referral'"),
              postgresql_where=text("\"commissionType\" = 'direct_referral'")),
        # Один pool_bonus на (покупка, цикл)
        Index('uq_pool_bonus_purchase_cycle', 'purchaseID', 'cycleNumber', unique=True,
              sqlite_where=text("\"commissionType\" = 'pool_bonus'"),
              postgresql_where=text("\"commissionType\" = 'pool_bonus'")),
    )

    commissionID = Column(Integer, primary_key=True, autoincrement=True)

    commissionType = Column(String, nullable=False)  # direct_referral, pool_bonus

    # Кто получает / от кого
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    fromUserID = Column(Integer, ForeignKey('users.userID'), nullable=False)

    # Weak references, audit only
    purchaseID = Column(Integer, ForeignKey('purchases.purchaseID'), nullable=False, index=True)
    cycleNumber = Column(Integer, nullable=False)

    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String, default="USDT")
    status = Column(String, default="pending", index=True)  # pending, paid
    paidAt = Column(DateTime, nullable=True)

    # "metadata" is reserved on declarative classes
    details = Column('metadata', JSON, nullable=True)
    # {
    #   "percentage": 10,
    #   "baseAmount": "100.00",
    #   "cycleNumber": 1,
    #   "paymentTrigger": "first_cycle_completion"
    # }

    # Relationships
    user = relationship('User', foreign_keys=[userID], backref='commissions_received')
    fromUser = relationship('User', foreign_keys=[fromUserID], backref='commissions_generated')
    purchase = relationship('Purchase', backref='commissions')

    def __repr__(self):
        return (f"<Commission(commissionID={self.commissionID}, type={self.commissionType}, "
                f"user={self.userID}, amount={self.amount})>")
