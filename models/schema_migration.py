# models/schema_migration.py
"""
SchemaMigration model - versions of data migrations already applied.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime, timezone
from models.base import Base


class SchemaMigration(Base):
    __tablename__ = 'schema_migrations'

    version = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    appliedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    result = Column(Text, nullable=True)  # JSON summary returned by the migration

    def __repr__(self):
        return f"<SchemaMigration(version={self.version}, name={self.name})>"
