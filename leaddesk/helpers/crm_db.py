"""Engine, schema bootstrap and sessions for the CRM record store.

``init_db`` is the single entry point: it binds the engine, creates any
missing tables for the registered models, and prepares the session factory
used by :func:`get_session`.

Configuration:
    CRM_DATABASE_URL env var (default: ``sqlite:///usr/crm.db``)
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///usr/crm.db"


class Base(DeclarativeBase):
    """Declarative base for lead records."""


_SessionLocal: sessionmaker[Session] | None = None


def init_db(url: str | None = None) -> None:
    """Connect to the CRM database and create missing tables.

    Args:
        url: SQLAlchemy connection string.  Falls back to
            ``CRM_DATABASE_URL``, then to :data:`DEFAULT_DATABASE_URL`.
    """
    global _SessionLocal

    # Registers the lead tables on Base before create_all
    import leaddesk.helpers.lead_store  # noqa: F401

    url = url or os.environ.get("CRM_DATABASE_URL", DEFAULT_DATABASE_URL)
    backend = url.split("://")[0]

    connect_args: dict = {}
    if backend.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(url, echo=False, connect_args=connect_args)
    Base.metadata.create_all(engine)
    _SessionLocal = sessionmaker(bind=engine)

    logger.info(
        "CRM database ready (%s backend, %d tables)",
        backend,
        len(Base.metadata.tables),
    )


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error.

    Raises:
        RuntimeError: If :func:`init_db` has not been called yet.
    """
    if _SessionLocal is None:
        raise RuntimeError("CRM database not initialized; call init_db() first.")

    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
