# models/purchase.py
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Purchase(Base, AuditMixin):
    __tablename__ = 'purchases'

    # Primary key
    purchaseID = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign keys
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    packageID = Column(Integer, ForeignKey('packages.packageID'), nullable=False, index=True)
    paymentID = Column(Integer, ForeignKey('payments.paymentID'), nullable=True)

    # Purchase details
    amount = Column(DECIMAL(12, 2), nullable=False)  # Цена пакета
    amountPaid = Column(DECIMAL(12, 2), nullable=True)
    overpay = Column(DECIMAL(12, 2), default=0)
    currency = Column(String, default="USDT")

    # pending, paid, completed, cancelled, cancelled_duplicate
    status = Column(String, default="pending", index=True)
    firstCycleCompleted = Column(Boolean, default=False, nullable=False)

    # Payment linkage
    txHash = Column(String, nullable=True, index=True)
    network = Column(String, nullable=True)

    # Set on duplicates, points at the surviving purchase
    canonicalID = Column(Integer, ForeignKey('purchases.purchaseID'), nullable=True)

    paidAt = Column(DateTime, nullable=True)
    cancelledAt = Column(DateTime, nullable=True)

    notes = Column(JSON, nullable=True)  # createdBy, updatedBy, cancelReason

    # Relationships
    user = relationship('User', backref='purchases')
    package = relationship('Package')
    payment = relationship('Payment', backref='purchases')
    benefitEvents = relationship('BenefitEvent', back_populates='purchase',
                                 cascade='all, delete-orphan', order_by='BenefitEvent.transactionID')

    def __repr__(self):
        return f"<Purchase(purchaseID={self.purchaseID}, user={self.userID}, amount={self.amount}, status={self.status})>"
