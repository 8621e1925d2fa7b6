"""
Database engine, session factory and connection retry
"""

import logging
import random
import time
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from secure_credentials.core.config import settings
from secure_credentials.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Create the engine on first use and bind the session factory to it"""
    global _engine
    if _engine is None:
        kwargs = {"pool_pre_ping": True}
        if not settings.DATABASE_URL.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            )
        _engine = create_engine(settings.DATABASE_URL, **kwargs)
        SessionLocal.configure(bind=_engine)
    return _engine


def connect_with_retry(
    session: Session,
    retries: Optional[int] = None,
    base_sleep: Optional[float] = None
) -> None:
    """
    Make sure the session can reach the database.

    Retries transient connect failures with a small jittered backoff and
    raises StoreUnavailableError once the attempts are used up.
    """
    retries = retries or settings.DATABASE_CONNECT_RETRIES
    base_sleep = settings.DATABASE_CONNECT_BACKOFF_SECONDS if base_sleep is None else base_sleep

    attempt = 0
    while True:
        try:
            session.execute(text("SELECT 1"))
            return
        except OperationalError as e:
            session.rollback()
            attempt += 1
            if attempt >= retries:
                logger.error(f"Database unreachable after {attempt} attempts: {e}")
                raise StoreUnavailableError(str(e.orig) if e.orig else str(e)) from e
            logger.warning(f"Database connect attempt {attempt}/{retries} failed, retrying")
            time.sleep(base_sleep * attempt + random.uniform(0, base_sleep))


def get_db() -> Generator[Session, None, None]:
    """Dependency function to get a database session"""
    get_engine()
    db = SessionLocal()
    try:
        connect_with_retry(db)
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create tables (development only; production uses migrations)"""
    # Register models on the metadata
    import secure_credentials.models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def dispose_db() -> None:
    """Dispose the engine connection pool"""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def check_database() -> bool:
    """Health probe"""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except OperationalError:
        return False
