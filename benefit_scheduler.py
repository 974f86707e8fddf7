import asyncio
import logging
from datetime import date
from typing import Dict, Optional

from init import Session
from settlement_system.errors import TransientStoreFailure
from settlement_system.services.accrual_service import BenefitAccrualService

logger = logging.getLogger(__name__)


class BenefitScheduler:
    def __init__(self, check_interval: int = 3600, session_factory=Session, catch_up: bool = True):
        self.check_interval = check_interval
        self.session_factory = session_factory
        self.catch_up = catch_up
        self._running = False

    async def process_due_benefits(self, as_of: Optional[date] = None) -> Optional[Dict]:
        """
        Начисляет все ожидающие дневные бенефиты
        """
        with self.session_factory() as session:
            try:
                service = BenefitAccrualService(session)
                summary = await service.processDailyBenefitsForAllPurchases(asOf=as_of, catchUp=self.catch_up)
                if summary["errors"]:
                    logger.warning(f"Benefit run finished with {summary['errors']} failed purchases")
                return summary

            except TransientStoreFailure as e:
                logger.error(f"Benefit run interrupted, retrying next interval: {e}")
                return None

    async def run(self):
        """
        Запускает процесс начисления бенефитов
        """
        logger.info("Benefit scheduler started")
        self._running = True

        while self._running:
            try:
                await self.process_due_benefits()
                await asyncio.sleep(self.check_interval)
            except Exception as e:
                logger.error(f"Error in benefit scheduler main loop: {e}", exc_info=True)
                await asyncio.sleep(self.check_interval)

    async def stop(self):
        """
        Останавливает процесс начисления бенефитов
        """
        self._running = False
        logger.info("Benefit scheduler stopped")
