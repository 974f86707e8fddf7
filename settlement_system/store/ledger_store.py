# settlement_system/store/ledger_store.py
"""
Ledger store helpers.

- createLedgerEngine / createSessionFactory: engine and session setup with store timeouts
- unitOfWork: explicit all-or-nothing transaction around a block of store operations
- insertIfAbsent: atomic insert backed by a unique index

Every write path of the settlement core goes through unitOfWork, and every
record that doubles as an idempotency marker is created through insertIfAbsent.
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple, Type
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from settlement_system.errors import TransientStoreFailure

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


def createLedgerEngine(url: str, timeoutSeconds: float = 10.0) -> Engine:
    """Create engine with store-level timeouts for the given database URL."""
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeoutSeconds}
        )

        # pysqlite emits its own BEGIN and breaks SAVEPOINT, SQLAlchemy has to own it
        @event.listens_for(engine, "connect")
        def _disableDriverTransactions(dbapiConnection, connectionRecord):
            dbapiConnection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emitBegin(connection):
            connection.exec_driver_sql("BEGIN")

        return engine

    connectArgs = {}
    if url.startswith("postgresql"):
        connectArgs["options"] = f"-c statement_timeout={int(timeoutSeconds * 1000)}"

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeoutSeconds,
        connect_args=connectArgs
    )


def createSessionFactory(engine: Engine) -> sessionmaker:
    """Session factory; objects stay readable after their unit of work commits."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def _isTransient(error: BaseException) -> bool:
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


@contextmanager
def unitOfWork(
        session: Session,
        operation: str,
        key: Any = None,
        timeoutSeconds: Optional[float] = None
) -> Iterator[Session]:
    """
    Run a block of store operations as one all-or-nothing unit.

    Opens a transaction on the session, or a savepoint when the caller already
    owns a transaction (the caller then decides on the final commit).
    Commits on success, rolls back on any exception. Timeouts and lost
    connections are re-raised as TransientStoreFailure(operation, key).
    """
    transaction = session.begin_nested() if session.in_transaction() else session.begin()

    try:
        with transaction:
            if timeoutSeconds is not None and session.get_bind().dialect.name == "postgresql":
                session.execute(text(f"SET LOCAL statement_timeout = {int(timeoutSeconds * 1000)}"))
            yield session
    except DBAPIError as e:
        if not _isTransient(e):
            raise
        logger.error(f"{operation} failed for {key!r}, rolled back: {e}", exc_info=True)
        raise TransientStoreFailure(operation, key, e) from e
    except PoolTimeoutError as e:
        logger.error(f"{operation} timed out waiting for a connection ({key!r})", exc_info=True)
        raise TransientStoreFailure(operation, key, e) from e


def _findExisting(session: Session, model: Type, lookup: Dict[str, Any]):
    return session.query(model).filter_by(**lookup).first()


def insertIfAbsent(
        session: Session,
        model: Type,
        lookup: Dict[str, Any],
        values: Optional[Dict[str, Any]] = None
) -> Tuple[Any, bool]:
    """
    Insert model(**lookup, **values) unless a row matching lookup exists.

    lookup must be the column set of a unique index on the model. The insert
    runs inside a savepoint, so a unique violation caused by a concurrent
    writer only discards this insert and the existing row is returned.

    Returns (record, created).
    """
    existing = _findExisting(session, model, lookup)
    if existing is not None:
        return existing, False

    record = model(**lookup, **(values or {}))
    try:
        with session.begin_nested():
            session.add(record)
    except IntegrityError:
        existing = _findExisting(session, model, lookup)
        if existing is None:
            raise
        logger.info(f"Concurrent insert of {model.__name__} {lookup} detected, keeping existing record")
        return existing, False

    return record, True
