import logging
import asyncio

from init import Session, engine, init_tables
from migrator import MigrationRunner
from benefit_scheduler import BenefitScheduler
import config

logger = logging.getLogger(__name__)


async def setup():
    logger.info("Starting application setup...")

    init_tables(engine)
    logger.info("Database initialized")

    with Session() as session:
        applied = MigrationRunner(session).run()
    logger.info(f"Data migrations applied: {len(applied)}")


async def main():
    """Основная асинхронная функция"""
    scheduler = BenefitScheduler(check_interval=config.BENEFIT_CHECK_INTERVAL)

    try:
        await setup()
        logger.info("Application setup completed")

        await scheduler.run()

    except Exception as e:
        logger.error(f"Critical error in main: {e}")
        raise
    finally:
        await scheduler.stop()


if __name__ == '__main__':
    try:
        logging.basicConfig(
            level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Сервис остановлен.")
    except Exception as e:
        logger.critical(f"Unexpected error: {e}")
        raise
