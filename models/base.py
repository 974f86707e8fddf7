# models/base.py
"""
Base model and mixins for all ledger tables.
"""
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, DateTime
from datetime import datetime, timezone

Base = declarative_base()


class AuditMixin:
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    updatedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                       onupdate=lambda: datetime.now(timezone.utc))
