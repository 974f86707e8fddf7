# models/package.py
"""
Package model - local copy of the package catalog.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, JSON
from models.base import Base, AuditMixin


class Package(Base, AuditMixin):
    __tablename__ = 'packages'

    packageID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    price = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String, default="USDT")
    isActive = Column(Boolean, default=True)

    # Packages created before rate configuration existed have no benefitConfig
    benefitConfig = Column(JSON, nullable=True)
    # {
    #   "dailyRate": 0.125,
    #   "totalDays": 40,
    #   "cyclesTotal": 5
    # }

    def __repr__(self):
        return f"<Package(packageID={self.packageID}, name={self.name}, price={self.price})>"
