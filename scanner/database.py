"""Transactional key/value store for device records.

The store is a single SQLite file holding the ``device_records`` table
(``guid`` -> JSON text). Access goes through two scoped transactions:

    with store.view() as tx:       # shared, read-only
        tx.get(guid)
    with store.update() as tx:     # exclusive, commit on success, rollback on error
        tx.set(guid, data)

A reader/writer lock lets many readers in at once or one writer alone.
"""

import contextlib
import logging
import threading
from pathlib import Path
from typing import Iterator, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from .errors import NotFoundError, StoreError
from .models import DeviceRecord

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or a single writer. Writers are not starved."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextlib.contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextlib.contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class Tx:
    """Key/value view over one SQLModel session."""

    def __init__(self, session: Session, writable: bool):
        self._session = session
        self._writable = writable

    def get(self, key: str) -> str:
        row = self._session.get(DeviceRecord, key)
        if row is None:
            raise NotFoundError(key)
        return row.data

    def exists(self, key: str) -> bool:
        return self._session.get(DeviceRecord, key) is not None

    def set(self, key: str, value: str) -> None:
        self._check_writable()
        row = self._session.get(DeviceRecord, key)
        if row is None:
            row = DeviceRecord(guid=key, data=value)
        else:
            row.data = value
        self._session.add(row)

    def delete(self, key: str) -> None:
        self._check_writable()
        row = self._session.get(DeviceRecord, key)
        if row is None:
            raise NotFoundError(key)
        self._session.delete(row)

    def ascend(self) -> Iterator[Tuple[str, str]]:
        """Yield (key, value) pairs in ascending key order."""
        statement = select(DeviceRecord).order_by(DeviceRecord.guid)
        for row in self._session.exec(statement):
            yield row.guid, row.data

    def _check_writable(self) -> None:
        if not self._writable:
            raise StoreError("write attempted inside a read-only transaction")


class Store:
    def __init__(self, path: str, max_connections: int = 10):
        if not path:
            raise StoreError("database path is required")
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        # SQLite needs check_same_thread False: workers share the engine
        self._engine = create_engine(
            f"sqlite:///{path}",
            echo=False,
            connect_args={"check_same_thread": False},
            pool_size=max_connections,
        )
        self._lock = ReadWriteLock()
        try:
            SQLModel.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            self._engine.dispose()
            raise StoreError(f"opening database {path}: {e}") from e

    @contextlib.contextmanager
    def view(self) -> Iterator[Tx]:
        with self._lock.read_locked():
            try:
                with Session(self._engine) as session:
                    yield Tx(session, writable=False)
            except SQLAlchemyError as e:
                raise StoreError(f"read transaction failed: {e}") from e

    @contextlib.contextmanager
    def update(self) -> Iterator[Tx]:
        with self._lock.write_locked():
            try:
                with Session(self._engine) as session:
                    try:
                        yield Tx(session, writable=True)
                        session.commit()
                    except BaseException:
                        session.rollback()
                        raise
            except SQLAlchemyError as e:
                raise StoreError(f"write transaction failed: {e}") from e

    def close(self) -> None:
        with self._lock.write_locked():
            self._engine.dispose()


_store: Optional[Store] = None
_store_guard = threading.Lock()


def get_store() -> Store:
    """Process-wide store built from the environment configuration."""
    global _store
    with _store_guard:
        if _store is None:
            from .config import load_config

            cfg = load_config(local_mode=True)
            _store = Store(cfg.database.path, cfg.database.max_connections)
            logger.info("Opened device cache at %s", cfg.database.path)
        return _store
