# models/__init__.py
"""
Ledger models for the settlement core.
Import all models here so metadata is complete and for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Collaborator mirrors
from models.user import User
from models.package import Package

# Ledger
from models.payment import Payment
from models.purchase import Purchase
from models.benefit_event import BenefitEvent
from models.commission import Commission

# Maintenance
from models.schema_migration import SchemaMigration

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Collaborators
    'User',
    'Package',

    # Ledger
    'Payment',
    'Purchase',
    'BenefitEvent',
    'Commission',

    # Maintenance
    'SchemaMigration',
]
