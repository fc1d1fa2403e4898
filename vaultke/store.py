"""
Database Store
Owns the SQLAlchemy engine behind the API and hands out transactional sessions
"""

import logging
import threading
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vaultke.models import db

logger = logging.getLogger(__name__)

MEMORY_URL = 'sqlite://'


class StoreClosedError(RuntimeError):
    """Raised when a session is requested from a closed store"""

    def __init__(self, message='database connection is closed'):
        super().__init__(message)


def normalize_url(url):
    """
    Accept bare SQLite paths as well as SQLAlchemy URLs

    ':memory:' and '' map to a private in-memory database,
    'vaultke.db' maps to 'sqlite:///vaultke.db'.
    """
    if not url or url == ':memory:':
        return MEMORY_URL
    if url.startswith('file:'):
        url = url[len('file:'):]
    if '://' not in url:
        return 'sqlite:///' + url
    return url


class Store:
    """
    Handle to a relational store with the VaultKe schema applied.

    All sessions are serialised through a re-entrant lock: an in-memory
    SQLite database lives on one shared connection, so two threads must
    never interleave transactions on it.
    """

    def __init__(self, url=MEMORY_URL, echo=False):
        self.url = normalize_url(url)
        self.echo = echo
        self._engine = None
        self._session_factory = None
        self._lock = threading.RLock()
        self._closed = False

    @property
    def closed(self):
        return self._closed

    @property
    def engine(self):
        if self._closed or self._engine is None:
            raise StoreClosedError()
        return self._engine

    @property
    def tables(self):
        """Tables in dependency order (parents first)"""
        return db.metadata.sorted_tables

    def open(self):
        """Create the engine and apply the schema. DDL errors propagate."""
        with self._lock:
            if self._engine is not None:
                return self
            options = {'echo': self.echo}
            if self.url.startswith('sqlite'):
                options['connect_args'] = {'check_same_thread': False}
                if self.url == MEMORY_URL:
                    options['poolclass'] = StaticPool
            self._engine = create_engine(self.url, **options)
            db.metadata.create_all(self._engine)
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
            self._closed = False
            logger.info(f"Store opened ({self.url})")
        return self

    def close(self):
        """Release the engine; later sessions raise StoreClosedError"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Store closed")

    @contextmanager
    def session_scope(self):
        """
        Provide a transactional scope around a series of operations

        Commits on success, rolls back and re-raises on error.
        """
        with self._lock:
            if self._closed or self._session_factory is None:
                raise StoreClosedError()
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def wipe(self):
        """Delete every row from every table, children first"""
        with self.session_scope() as session:
            for table in reversed(self.tables):
                session.execute(table.delete())
        logger.debug("Store wiped")

    def count(self, model, **filters):
        with self.session_scope() as session:
            return session.query(model).filter_by(**filters).count()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __repr__(self):
        state = 'closed' if self._closed else ('open' if self._engine is not None else 'unopened')
        return f'<Store {self.url} {state}>'


def open_store(url=MEMORY_URL, echo=False):
    """Open a fresh store with the schema applied"""
    return Store(url, echo=echo).open()
