"""
SQLite list store for AppShelf.

Implements ``ListGateway`` on top of SQLAlchemy. Lists and their saved apps
live in ``applications.db`` under the data directory; the schema is created
on first use and the undeletable "Default" list is seeded with id 1.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from appshelf.errors import (
    DefaultListError,
    DuplicateListError,
    ListNotFoundError,
    StoreError,
)
from appshelf.models import (
    DEFAULT_LIST_DESCRIPTION,
    DEFAULT_LIST_ID,
    DEFAULT_LIST_NAME,
    AppList,
    ApplicationRecord,
)
from appshelf.store import ListGateway
from appshelf.store.tables import Base, ListRow, SavedAppRow

logger = logging.getLogger("appshelf.store")

MEMORY_URL = "sqlite:///:memory:"


def database_url(path: Path) -> str:
    return f"sqlite:///{path}"


def get_engine(url: str) -> Engine:
    """Return a SQLAlchemy engine for *url*, creating the data dir as needed.

    Connections are shared across the manager's worker threads, so the sqlite3
    same-thread check is disabled. In-memory databases use a single pooled
    connection so every session sees the same data.
    """
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url == MEMORY_URL:
        kwargs["poolclass"] = StaticPool
    elif url.startswith("sqlite:///"):
        Path(url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, echo=False, future=True, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def _driver_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


def _to_app_list(row: ListRow) -> AppList:
    return AppList(
        id=row.id,
        name=row.name,
        description=row.description or "",
        created_at=row.created_at or datetime.now(),
    )


def _to_record(row: SavedAppRow) -> ApplicationRecord:
    return ApplicationRecord(
        name=row.name,
        package_id=row.package_id,
        version=row.version or "",
        source=row.source,
        description=row.description or "",
        is_saved=True,
        list_id=row.list_id,
    )


class SqlListStore(ListGateway):
    """List store backed by a SQLite database."""

    def __init__(self, url: str = MEMORY_URL, engine: Optional[Engine] = None):
        """
        Open (and if needed create) the list database.

        Args:
            url: SQLAlchemy database URL, ignored when *engine* is given
            engine: Pre-built engine, mainly for tests
        """
        self.engine = engine or get_engine(url)
        self._sessions = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        self.init_db()

    @classmethod
    def from_path(cls, path: Path) -> "SqlListStore":
        return cls(database_url(path))

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            if isinstance(e, IntegrityError) and "UNIQUE" in _driver_message(e) and (
                "lists.name" in _driver_message(e)
            ):
                raise DuplicateListError(_driver_message(e)) from e
            raise StoreError(_driver_message(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_db(self) -> None:
        """Create tables if they don't exist and seed the default list."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(_driver_message(e)) from e

        with self._session() as session:
            if session.get(ListRow, DEFAULT_LIST_ID) is not None:
                return
            clash = session.query(ListRow).filter(ListRow.name == DEFAULT_LIST_NAME).first()
            if clash is not None:
                logger.warning(
                    "A list named %r exists with id %s; not seeding the default list",
                    DEFAULT_LIST_NAME,
                    clash.id,
                )
                return
            session.add(
                ListRow(
                    id=DEFAULT_LIST_ID,
                    name=DEFAULT_LIST_NAME,
                    description=DEFAULT_LIST_DESCRIPTION,
                )
            )
            logger.info("Created the default list")

    def _require_list(self, session: Session, list_id: int) -> ListRow:
        row = session.get(ListRow, list_id)
        if row is None:
            raise ListNotFoundError(f"list {list_id} does not exist")
        return row

    def create_list(self, name: str, description: str = "") -> int:
        with self._session() as session:
            if session.query(ListRow).filter(ListRow.name == name).first() is not None:
                raise DuplicateListError(f"a list named {name!r} already exists")
            row = ListRow(name=name, description=description)
            session.add(row)
            session.flush()
            list_id = row.id
        logger.debug("Created list %r with id %s", name, list_id)
        return list_id

    def get_lists(self) -> List[AppList]:
        with self._session() as session:
            rows = session.query(ListRow).order_by(ListRow.name).all()
            return [_to_app_list(row) for row in rows]

    def get_list_by_id(self, list_id: int) -> AppList:
        with self._session() as session:
            return _to_app_list(self._require_list(session, list_id))

    def get_list_by_name(self, name: str) -> AppList:
        with self._session() as session:
            row = session.query(ListRow).filter(ListRow.name == name).first()
            if row is None:
                raise ListNotFoundError(f"no list named {name!r}")
            return _to_app_list(row)

    def update_list(self, list_id: int, name: str, description: str = "") -> None:
        with self._session() as session:
            row = self._require_list(session, list_id)
            clash = (
                session.query(ListRow)
                .filter(ListRow.name == name, ListRow.id != list_id)
                .first()
            )
            if clash is not None:
                raise DuplicateListError(f"a list named {name!r} already exists")
            row.name = name
            row.description = description

    def delete_list(self, list_id: int) -> None:
        if list_id == DEFAULT_LIST_ID:
            raise DefaultListError("cannot delete the default list")
        with self._session() as session:
            session.delete(self._require_list(session, list_id))
        logger.debug("Deleted list %s", list_id)

    def save_app_to_list(self, list_id: int, app: ApplicationRecord) -> None:
        with self._session() as session:
            self._require_list(session, list_id)
            row = (
                session.query(SavedAppRow)
                .filter(
                    SavedAppRow.list_id == list_id,
                    SavedAppRow.package_id == app.package_id,
                )
                .first()
            )
            if row is None:
                row = SavedAppRow(list_id=list_id, package_id=app.package_id)
                session.add(row)
            row.name = app.name
            row.version = app.version
            row.source = app.source
            row.description = app.description
            row.created_at = datetime.now()

    def get_apps_in_list(self, list_id: int) -> List[ApplicationRecord]:
        with self._session() as session:
            rows = (
                session.query(SavedAppRow)
                .filter(SavedAppRow.list_id == list_id)
                .order_by(SavedAppRow.name)
                .all()
            )
            return [_to_record(row) for row in rows]

    def remove_app_from_list(self, list_id: int, package_id: str) -> None:
        with self._session() as session:
            session.query(SavedAppRow).filter(
                SavedAppRow.list_id == list_id,
                SavedAppRow.package_id == package_id,
            ).delete(synchronize_session=False)

    def is_app_in_list(self, list_id: int, package_id: str) -> bool:
        with self._session() as session:
            count = (
                session.query(SavedAppRow)
                .filter(
                    SavedAppRow.list_id == list_id,
                    SavedAppRow.package_id == package_id,
                )
                .count()
            )
            return count > 0

    def get_app_lists_containing(self, package_id: str) -> List[AppList]:
        with self._session() as session:
            rows = (
                session.query(ListRow)
                .join(SavedAppRow, SavedAppRow.list_id == ListRow.id)
                .filter(SavedAppRow.package_id == package_id)
                .order_by(ListRow.name)
                .all()
            )
            return [_to_app_list(row) for row in rows]
