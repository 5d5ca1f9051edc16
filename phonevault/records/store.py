"""Record Store - Encrypted phone number rows in Postgres

Self-Explanatory: Insert and exact-match lookup of opaque encrypted payloads.
How: SQLAlchemy Core over a pooled engine; the store never sees plaintext.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, create_engine, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from phonevault.errors import DatabaseConnectionError, RecordNotFound, StorageFailure
from phonevault.utils.metrics import records_created_total, track_db_query

logger = structlog.get_logger()

metadata = MetaData()

phone_numbers = Table(
    "phone_numbers",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("encrypted_data", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


@dataclass(frozen=True)
class EncryptedRecord:
    id: str
    encrypted_data: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "encrypted_data": self.encrypted_data,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def make_engine(url: str) -> Engine:
    """Create the pooled engine for a connection string

    In-memory SQLite (tests) shares one connection across threads.
    """
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, pool_pre_ping=True)


class RecordStore:
    """Create and get EncryptedRecords"""

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> "RecordStore":
        return cls(make_engine(url))

    def ping(self) -> None:
        """Raises DatabaseConnectionError if the database is unreachable"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise DatabaseConnectionError("Failed to connect to database", details=str(e))

    def ensure_schema(self) -> None:
        """Create the phone_numbers table if missing"""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise DatabaseConnectionError("Failed to migrate database", details=str(e))

    @track_db_query("insert")
    def create(self, encrypted_payload: str) -> EncryptedRecord:
        """Persist a payload under a fresh id

        Raises:
            StorageFailure: insert failed
        """
        now = datetime.now(timezone.utc)
        record = EncryptedRecord(
            id=str(uuid.uuid4()),
            encrypted_data=encrypted_payload,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    phone_numbers.insert().values(
                        id=record.id,
                        encrypted_data=record.encrypted_data,
                        created_at=record.created_at,
                        updated_at=record.updated_at,
                    )
                )
        except SQLAlchemyError as e:
            logger.error("Record insert failed", record_id=record.id, error=str(e))
            raise StorageFailure("Failed to save phone number", details=str(e))

        records_created_total.inc()
        logger.info("Record created", record_id=record.id)
        return record

    @track_db_query("select")
    def get_by_id(self, record_id: str) -> EncryptedRecord:
        """Exact-match lookup

        Raises:
            RecordNotFound: no row with this id
            StorageFailure: query failed
        """
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(phone_numbers).where(phone_numbers.c.id == record_id)
                ).mappings().first()
        except SQLAlchemyError as e:
            logger.error("Record lookup failed", record_id=record_id, error=str(e))
            raise StorageFailure("Failed to load phone number", details=str(e))

        if row is None:
            raise RecordNotFound(record_id)
        return EncryptedRecord(
            id=row["id"],
            encrypted_data=row["encrypted_data"],
            created_at=_as_utc(row["created_at"]),
            updated_at=_as_utc(row["updated_at"]),
        )

    def dispose(self) -> None:
        self.engine.dispose()
