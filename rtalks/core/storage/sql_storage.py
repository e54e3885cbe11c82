"""
SQL store for admins, events, speakers and the public site content.

The store is an explicit handle: it is opened once at startup, passed to
the components that need it, and closed on shutdown.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from rtalks.core.errors import DatabaseError
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


metadata = MetaData()

admins_table = Table(
    "admins", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("username", String(100), unique=True, nullable=False),
    Column("password_hash", String(255), nullable=False),
    Column("created_at", DateTime, default=_utcnow),
)

events_table = Table(
    "events", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("date", Date),
    Column("venue", String(255)),
    Column("created_at", DateTime, default=_utcnow),
    Column("updated_at", DateTime, default=_utcnow),
)

speakers_table = Table(
    "speakers", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("bio", Text),
    Column("company", String(255)),
    Column("position", String(255)),
    Column("image_url", String(1024)),
    Column("image_filename", String(255)),
    Column("created_at", DateTime, default=_utcnow),
    Column("updated_at", DateTime, default=_utcnow),
)

packages_table = Table(
    "event_packages", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("price", Numeric(10, 2), nullable=False, default=0),
    Column("features", JSON),
)

stats_table = Table(
    "stats", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("attendees", Integer, default=0),
    Column("speakers", Integer, default=0),
    Column("events", Integer, default=0),
    Column("countries", Integer, default=0),
)

contact_table = Table(
    "contact_info", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255)),
    Column("phone", String(64)),
    Column("address", Text),
)

SPEAKER_FIELDS = ("name", "bio", "company", "position")
EVENT_FIELDS = ("title", "description", "date", "venue")


class SQLStore:
    """
    Relational store backed by SQLAlchemy Core.

    Lifecycle:
        store = SQLStore(url)
        store.open()      # creates engine and tables
        ...
        store.close()     # disposes the connection pool
    """

    def __init__(self, url: str, echo: bool = False, pool_size: int = 5):
        self.url = url
        self.echo = echo
        self.pool_size = pool_size
        self._engine: Engine | None = None

    def open(self) -> None:
        """Create the engine and any missing tables."""
        if self._engine is not None:
            return

        logger.debug(f"Opening SQL store: {self.safe_url()}")
        kwargs: Dict[str, Any] = {"echo": self.echo}
        if self.url.startswith("sqlite"):
            # Requests are served from a thread pool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs["pool_size"] = self.pool_size
            kwargs["pool_pre_ping"] = True

        self._engine = create_engine(self.url, **kwargs)
        metadata.create_all(self._engine)
        logger.info("SQL store opened")

    def close(self) -> None:
        """Dispose of the connection pool."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("SQL store closed")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseError("Store is not open")
        return self._engine

    def safe_url(self) -> str:
        return self.url.split("@")[-1] if "@" in self.url else self.url

    def _fetch_one(self, query) -> Optional[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).mappings().first()
        except SQLAlchemyError as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError() from e
        return dict(row) if row else None

    def _fetch_all(self, query) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            logger.error(f"Query failed: {e}")
            raise DatabaseError() from e
        return [dict(row) for row in rows]

    def _write_returning(self, table: Table, query) -> Optional[Dict[str, Any]]:
        """Run an INSERT/UPDATE/DELETE and return the affected row."""
        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    query.returning(*table.c)).mappings().first()
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Write to {table.name} failed: {e}")
            raise DatabaseError() from e
        return dict(row) if row else None

    def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, DatabaseError) as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    # Admins

    def get_admin(self, admin_id: int) -> Optional[Dict[str, Any]]:
        """Fetch an admin by id, including the password hash."""
        return self._fetch_one(
            select(admins_table).where(admins_table.c.id == admin_id))

    def get_admin_by_login(
        self,
        email: str | None = None,
        username: str | None = None,
    ) -> Optional[Dict[str, Any]]:
        """Fetch an admin by email or username."""
        if email:
            condition = admins_table.c.email == email
        elif username:
            condition = admins_table.c.username == username
        else:
            return None
        return self._fetch_one(select(admins_table).where(condition))

    def create_admin(
            self,
            email: str,
            username: str,
            password_hash: str) -> Dict[str, Any]:
        """
        Insert a new admin.

        Raises:
            ValueError: If the email or username is already taken
        """
        query = insert(admins_table).values(
            email=email, username=username, password_hash=password_hash)
        try:
            return self._write_returning(admins_table, query)
        except IntegrityError as e:
            raise ValueError(
                f"Admin with email '{email}' or username '{username}' already exists") from e

    def delete_admin(self, admin_id: int) -> bool:
        query = delete(admins_table).where(admins_table.c.id == admin_id)
        return self._write_returning(admins_table, query) is not None

    def admin_exists(self, email: str, username: str) -> bool:
        query = select(admins_table.c.id).where(
            or_(admins_table.c.email == email,
                admins_table.c.username == username))
        return self._fetch_one(query) is not None

    # Events

    def list_events(self) -> List[Dict[str, Any]]:
        return self._fetch_all(
            select(events_table).order_by(events_table.c.date.asc()))

    def get_upcoming_event(self) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            select(events_table).order_by(events_table.c.date.asc()).limit(1))

    def get_event(self, event_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            select(events_table).where(events_table.c.id == event_id))

    def create_event(self, values: Dict[str, Any]) -> Dict[str, Any]:
        data = {k: values.get(k) for k in EVENT_FIELDS}
        return self._write_returning(
            events_table, insert(events_table).values(**data))

    def update_event(
            self,
            event_id: int,
            values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        data = {k: values.get(k) for k in EVENT_FIELDS}
        data["updated_at"] = _utcnow()
        query = update(events_table).where(
            events_table.c.id == event_id).values(**data)
        return self._write_returning(events_table, query)

    def delete_event(self, event_id: int) -> Optional[Dict[str, Any]]:
        query = delete(events_table).where(events_table.c.id == event_id)
        return self._write_returning(events_table, query)

    # Speakers

    def list_speakers(self) -> List[Dict[str, Any]]:
        return self._fetch_all(
            select(speakers_table).order_by(speakers_table.c.name.asc()))

    def get_speaker(self, speaker_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            select(speakers_table).where(speakers_table.c.id == speaker_id))

    def create_speaker(
        self,
        values: Dict[str, Any],
        image_url: str | None = None,
        image_filename: str | None = None,
    ) -> Dict[str, Any]:
        data = {k: values.get(k) for k in SPEAKER_FIELDS}
        query = insert(speakers_table).values(
            **data, image_url=image_url, image_filename=image_filename)
        return self._write_returning(speakers_table, query)

    def update_speaker(
        self,
        speaker_id: int,
        values: Dict[str, Any],
        image_url: str | None = None,
        image_filename: str | None = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Update a speaker; the image columns change only when a new image is given.

        Returns:
            The updated row, or None if the speaker does not exist
        """
        data = {k: values.get(k) for k in SPEAKER_FIELDS}
        data["updated_at"] = _utcnow()
        if image_url is not None:
            data["image_url"] = image_url
            data["image_filename"] = image_filename
        query = update(speakers_table).where(
            speakers_table.c.id == speaker_id).values(**data)
        return self._write_returning(speakers_table, query)

    def delete_speaker(self, speaker_id: int) -> Optional[Dict[str, Any]]:
        query = delete(speakers_table).where(speakers_table.c.id == speaker_id)
        return self._write_returning(speakers_table, query)

    # Public site content

    def list_packages(self) -> List[Dict[str, Any]]:
        return self._fetch_all(
            select(packages_table).order_by(packages_table.c.price.asc()))

    def get_package(self, package_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            select(packages_table).where(packages_table.c.id == package_id))

    def create_package(self, values: Dict[str, Any]) -> Dict[str, Any]:
        query = insert(packages_table).values(
            name=values["name"],
            description=values.get("description"),
            price=values.get("price", 0),
            features=values.get("features") or [],
        )
        return self._write_returning(packages_table, query)

    def get_stats(self) -> Dict[str, Any]:
        return self._fetch_one(select(stats_table).limit(1)) or {}

    def set_stats(self, values: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(stats_table))
                conn.execute(insert(stats_table).values(**values))
        except SQLAlchemyError as e:
            raise DatabaseError() from e
        return self.get_stats()

    def get_contact_info(self) -> Dict[str, Any]:
        return self._fetch_one(select(contact_table).limit(1)) or {}

    def set_contact_info(self, values: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(contact_table))
                conn.execute(insert(contact_table).values(**values))
        except SQLAlchemyError as e:
            raise DatabaseError() from e
        return self.get_contact_info()
