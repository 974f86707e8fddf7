# models/payment.py
"""
Payment model - one verified blockchain deposit.
"""
from sqlalchemy import Column, Integer, BigInteger, String, DECIMAL, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Payment(Base, AuditMixin):
    __tablename__ = 'payments'
    __table_args__ = (
        UniqueConstraint('txHash', 'network', name='uq_payment_tx_network'),
    )

    # Primary key
    paymentID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Blockchain reference
    txHash = Column(String, nullable=False)
    network = Column(String, nullable=False)  # BEP20, TRC20, ERC20
    blockNumber = Column(BigInteger, nullable=True)
    confirmations = Column(Integer, default=0)

    # Wallet addresses
    fromAddress = Column(String, nullable=True)
    toAddress = Column(String, nullable=True)

    # Payment details
    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String, default="USDT")
    status = Column(String, default="pending")  # pending, processing, completed, failed, cancelled

    verifiedAt = Column(DateTime, nullable=True)
    completedAt = Column(DateTime, nullable=True)

    notes = Column(JSON, nullable=True)  # createdBy, updatedBy, lastUpdated

    # Note: createdAt, updatedAt - от AuditMixin

    # Relationships
    user = relationship('User', backref='payments')

    def __repr__(self):
        return f"<Payment(paymentID={self.paymentID}, txHash={self.txHash}, network={self.network}, status={self.status})>"
