from models import Base
from settlement_system.store.ledger_store import createLedgerEngine, createSessionFactory
import config


def get_session():
    """Создает и возвращает фабрику сессий SQLAlchemy и движок базы данных"""
    engine = createLedgerEngine(config.DATABASE_URL, config.STORE_TIMEOUT_SECONDS)
    session_factory = createSessionFactory(engine)
    return session_factory, engine


def init_tables(engine):
    """Инициализирует таблицы базы данных"""
    Base.metadata.create_all(engine)


Session, engine = get_session()
