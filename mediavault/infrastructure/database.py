"""Persistent catalog store.

The store is authoritative when reachable. Reachability is probed once by
`CatalogStore.connect()`; when the probe fails the store stays unavailable for
the rest of the process and callers fall back to filesystem scans.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Integer, String, create_engine, delete, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from mediavault.domain.models import CatalogEntry


class Base(DeclarativeBase):
    pass


class CatalogRecord(Base):
    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    folder_name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(255))
    summary: Mapped[str] = mapped_column(String(1000), default="")
    cover_ref: Mapped[str] = mapped_column(String(500), default="")
    primary_video_ref: Mapped[str] = mapped_column(String(500), default="")
    episode_count: Mapped[int] = mapped_column(Integer, default=0)
    physical_root_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    hosting_volume: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    def to_entry(self) -> CatalogEntry:
        return CatalogEntry(
            title=self.title,
            folder_name=self.folder_name,
            summary=self.summary or "",
            cover_ref=self.cover_ref or "",
            primary_video_ref=self.primary_video_ref or "",
            episode_count=self.episode_count or 0,
            physical_root_path=self.physical_root_path,
            hosting_volume=self.hosting_volume,
        )

    def apply(self, entry: CatalogEntry) -> None:
        self.title = entry.title
        self.summary = entry.summary
        self.cover_ref = entry.cover_ref
        self.primary_video_ref = entry.primary_video_ref
        self.episode_count = entry.episode_count
        self.physical_root_path = entry.physical_root_path
        self.hosting_volume = entry.hosting_volume


class StoreError(RuntimeError):
    """Raised when the catalog store cannot serve a read."""


class CatalogStore:
    def __init__(self, database_url: Optional[str]):
        self.database_url = database_url
        self.logger = logging.getLogger(__name__)
        self._engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker[Session]] = None
        self._available = False

    @property
    def available(self) -> bool:
        return self._available

    def connect(self) -> bool:
        """Open the engine and create tables. Called once at startup."""
        if not self.database_url:
            self.logger.warning("No catalog database configured; using filesystem mode")
            return False
        try:
            connect_args = {}
            if self.database_url.startswith("sqlite"):
                connect_args = {"check_same_thread": False, "timeout": 30}
            engine = create_engine(self.database_url, pool_pre_ping=True, connect_args=connect_args)
            Base.metadata.create_all(engine)
            with engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
        except SQLAlchemyError as e:
            self.logger.error(f"Cannot connect to catalog database: {e}")
            self.logger.warning("Catalog store unavailable; using filesystem mode for this process")
            return False

        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
        self._available = True
        self.logger.info("Catalog database connected")
        return True

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    def _session(self) -> Session:
        if self._sessions is None:
            raise StoreError("Catalog store is not connected")
        return self._sessions()

    def upsert(self, entry: CatalogEntry) -> bool:
        """Update the row with the same folder name, or insert a new one."""
        for attempt in (1, 2):
            try:
                with self._session() as session:
                    record = session.scalars(
                        select(CatalogRecord).where(CatalogRecord.folder_name == entry.folder_name)
                    ).first()
                    if record is None:
                        record = CatalogRecord(folder_name=entry.folder_name)
                        record.apply(entry)
                        session.add(record)
                        action = "Created"
                    else:
                        record.apply(entry)
                        action = "Updated"
                    session.commit()
                self.logger.info(f"{action} catalog entry: {entry.folder_name}")
                return True
            except IntegrityError:
                # Concurrent insert of the same folder; the retry sees the row and updates it
                if attempt == 2:
                    self.logger.error(f"Failed to upsert catalog entry {entry.folder_name}: duplicate folder")
                    return False
            except (SQLAlchemyError, StoreError) as e:
                self.logger.error(f"Failed to upsert catalog entry {entry.folder_name}: {e}")
                return False
        return False

    def list_entries(self) -> List[CatalogEntry]:
        try:
            with self._session() as session:
                records = session.scalars(select(CatalogRecord).order_by(CatalogRecord.title)).all()
                return [r.to_entry() for r in records]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list catalog entries: {e}") from e

    def get(self, folder_name: str) -> Optional[CatalogEntry]:
        try:
            with self._session() as session:
                record = session.scalars(
                    select(CatalogRecord).where(CatalogRecord.folder_name == folder_name)
                ).first()
                return record.to_entry() if record else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read catalog entry {folder_name}: {e}") from e

    def search(self, keyword: str) -> List[CatalogEntry]:
        pattern = f"%{keyword}%"
        try:
            with self._session() as session:
                records = session.scalars(
                    select(CatalogRecord)
                    .where(or_(CatalogRecord.title.ilike(pattern), CatalogRecord.folder_name.ilike(pattern)))
                    .order_by(CatalogRecord.title)
                ).all()
                return [r.to_entry() for r in records]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to search catalog for {keyword!r}: {e}") from e

    def delete(self, folder_name: str) -> bool:
        try:
            with self._session() as session:
                result = session.execute(delete(CatalogRecord).where(CatalogRecord.folder_name == folder_name))
                session.commit()
                return bool(result.rowcount)
        except (SQLAlchemyError, StoreError) as e:
            self.logger.error(f"Failed to delete catalog entry {folder_name}: {e}")
            return False

    def update_cover(self, folder_name: str, cover_ref: str) -> bool:
        return self.update_fields(folder_name, cover_ref=cover_ref)

    def update_fields(self, folder_name: str, **fields) -> bool:
        allowed = {"title", "summary", "cover_ref", "episode_count"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unsupported catalog fields: {sorted(unknown)}")
        try:
            with self._session() as session:
                record = session.scalars(
                    select(CatalogRecord).where(CatalogRecord.folder_name == folder_name)
                ).first()
                if record is None:
                    return False
                for key, value in fields.items():
                    if value is not None:
                        setattr(record, key, value)
                session.commit()
                return True
        except (SQLAlchemyError, StoreError) as e:
            self.logger.error(f"Failed to update catalog entry {folder_name}: {e}")
            return False
