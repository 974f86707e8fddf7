# settlement_system/utils/benefit_calculator.py
"""
Pure benefit arithmetic: rate resolution, cycle position and amounts.
No store access here.
"""
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional
import logging
import math

from settlement_system.config.rates import (
    AMOUNT_PRECISION, DAYS_PER_CYCLE, DEFAULT_CYCLES_TOTAL, DEFAULT_DAILY_RATE, PAUSE_DAYS
)

logger = logging.getLogger(__name__)

CYCLE_LENGTH = DAYS_PER_CYCLE + PAUSE_DAYS


@dataclass(frozen=True)
class CyclePosition:
    cycleNumber: int
    dayInCycle: int
    isPauseDay: bool


def _configValue(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _positiveDecimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    rate = Decimal(str(value))
    return rate if rate > 0 else None


def resolveRate(options: Optional[Mapping] = None, packageConfig: Any = None) -> Decimal:
    """
    Daily rate: options["rate"] -> packageConfig.benefitConfig.dailyRate
    -> packageConfig.dailyRate -> DEFAULT_DAILY_RATE.

    packageConfig may be a Package row or a catalog mapping. Missing or
    non-positive values fall through to the next level; never raises for
    missing configuration.
    """
    explicitRate = _positiveDecimal(_configValue(options, "rate"))
    if explicitRate is not None:
        return explicitRate

    benefitConfig = _configValue(packageConfig, "benefitConfig")
    configuredRate = _positiveDecimal(_configValue(benefitConfig, "dailyRate"))
    if configuredRate is not None:
        return configuredRate

    legacyRate = _positiveDecimal(_configValue(packageConfig, "dailyRate"))
    if legacyRate is not None:
        return legacyRate

    packageId = _configValue(packageConfig, "packageID") or _configValue(packageConfig, "packageId")
    logger.warning(
        f"No daily rate configured for package {packageId}, "
        f"using default rate {DEFAULT_DAILY_RATE}"
    )
    return DEFAULT_DAILY_RATE


def resolveCyclesTotal(packageConfig: Any = None) -> int:
    """benefitConfig.cyclesTotal, else derived from benefitConfig.totalDays, else default."""
    benefitConfig = _configValue(packageConfig, "benefitConfig")

    cyclesTotal = _configValue(benefitConfig, "cyclesTotal")
    if cyclesTotal:
        return int(cyclesTotal)

    totalDays = _configValue(benefitConfig, "totalDays")
    if totalDays:
        return math.ceil(int(totalDays) / DAYS_PER_CYCLE)

    return DEFAULT_CYCLES_TOTAL


def benefitDay(activationDate: date, asOf: date) -> int:
    """Day number of asOf since activation; day 1 is the day after activation."""
    return (asOf - activationDate).days


def cyclePosition(day: int) -> CyclePosition:
    """Map an absolute benefit day (1-based) to cycle number and day in cycle."""
    if day < 1:
        raise ValueError(f"Benefit day must be >= 1, got {day}")

    cycleNumber = (day - 1) // CYCLE_LENGTH + 1
    dayInCycle = (day - 1) % CYCLE_LENGTH + 1

    return CyclePosition(
        cycleNumber=cycleNumber,
        dayInCycle=dayInCycle,
        isPauseDay=dayInCycle > DAYS_PER_CYCLE
    )


def absoluteDay(cycleNumber: int, dayInCycle: int) -> int:
    return (cycleNumber - 1) * CYCLE_LENGTH + dayInCycle


def quantizeAmount(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(AMOUNT_PRECISION, ROUND_HALF_UP)


def calculateBenefitAmount(baseAmount: Any, rate: Any) -> Decimal:
    return quantizeAmount(Decimal(str(baseAmount)) * Decimal(str(rate)))
