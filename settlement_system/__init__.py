# settlement_system/__init__.py
"""
Settlement System - deposit settlement, benefit cycles and commissions.
"""

# Services
from settlement_system.services.idempotency_gate import IdempotencyGate, AdmissionResult
from settlement_system.services.settlement_service import (
    SettlementService, PaymentEvent, SettlementResult, validateAmountTolerance
)
from settlement_system.services.accrual_service import BenefitAccrualService, BenefitResult, AccrualStatus
from settlement_system.services.commission_service import CommissionService, DistributionResult

# Configuration
from settlement_system.config.rates import PaymentStatus, PurchaseStatus, CommissionType

# Store
from settlement_system.store.ledger_store import createLedgerEngine, createSessionFactory, unitOfWork, insertIfAbsent

# Utilities
from settlement_system.utils.time_machine import timeMachine
from settlement_system.utils.benefit_calculator import resolveRate, cyclePosition

# Events
from settlement_system.events.event_bus import eventBus, SettlementEvents

__all__ = [
    # Services
    'IdempotencyGate',
    'AdmissionResult',
    'SettlementService',
    'PaymentEvent',
    'SettlementResult',
    'validateAmountTolerance',
    'BenefitAccrualService',
    'BenefitResult',
    'AccrualStatus',
    'CommissionService',
    'DistributionResult',

    # Config
    'PaymentStatus',
    'PurchaseStatus',
    'CommissionType',

    # Store
    'createLedgerEngine',
    'createSessionFactory',
    'unitOfWork',
    'insertIfAbsent',

    # Utils
    'timeMachine',
    'resolveRate',
    'cyclePosition',

    # Events
    'eventBus',
    'SettlementEvents',
]
