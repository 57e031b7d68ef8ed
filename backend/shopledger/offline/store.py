# backend/shopledger/offline/store.py
"""
Durable device storage.

One sqlite file holds two things:
- cache_records: last known state per entity type, keyed by record id
- pending_actions: writes not yet confirmed by the server, in insertion order

Cache puts overwrite by primary key, so writing the same record twice leaves
one row holding the latest values. Queue ids come from AUTOINCREMENT and are
never reused, which keeps replay order strictly FIFO.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.pool import StaticPool

from shopledger.numeric import to_json_number
from shopledger.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("products", "sales", "expenses")

# Failure classification on a blocked queue entry
FAILURE_TRANSIENT = "transient"
FAILURE_REJECTED = "rejected"

metadata = MetaData()

cache_records = Table(
    "cache_records",
    metadata,
    Column("entity", String(16), primary_key=True),
    Column("record_id", String(64), primary_key=True),
    Column("body", Text, nullable=False),
    Column("stored_at", DateTime, nullable=False, default=utcnow),
)

pending_actions = Table(
    "pending_actions",
    metadata,
    Column("qid", Integer, primary_key=True, autoincrement=True),
    Column("kind", String(32), nullable=False),
    Column("method", String(8), nullable=False),
    Column("path", String(255), nullable=False),
    Column("body", Text, nullable=True),
    # temporary id this action creates, if it is a create
    Column("creates", String(64), nullable=True),
    Column("ts", DateTime, nullable=False, default=utcnow),
    Column("attempts", Integer, nullable=False, default=0),
    Column("last_error", Text, nullable=True),
    Column("last_status", Integer, nullable=True),
    Column("failure", String(16), nullable=True),
    sqlite_autoincrement=True,
)


def _json_default(value):
    if isinstance(value, Decimal):
        return to_json_number(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value) -> str:
    return json.dumps(value, default=_json_default, sort_keys=True)


def _check_entity(entity: str) -> None:
    if entity not in ENTITY_TYPES:
        raise ValueError(f"unknown entity type {entity!r}")


def rewrite_value(value, temp: str, confirmed: int):
    if isinstance(value, str):
        return confirmed if value == temp else value
    if isinstance(value, list):
        return [rewrite_value(v, temp, confirmed) for v in value]
    if isinstance(value, dict):
        return {k: rewrite_value(v, temp, confirmed) for k, v in value.items()}
    return value


def _rewrite_path(path: str, temp: str, confirmed: int) -> str:
    return "/".join(str(confirmed) if part == temp else part for part in path.split("/"))


def open_engine(path: str):
    """SQLAlchemy engine on a sqlite file (":memory:" keeps a single shared connection)."""
    if path == ":memory:":
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    metadata.create_all(engine)
    return engine


class LocalCacheStore:
    """Per-entity record cache. Each entity type is updated independently."""

    def __init__(self, engine):
        self.engine = engine

    def put(self, entity: str, record: dict) -> None:
        self.put_many(entity, [record])

    def put_many(self, entity: str, records) -> None:
        _check_entity(entity)
        rows = [
            {"entity": entity, "record_id": str(r["id"]), "body": dumps(r), "stored_at": utcnow()}
            for r in records
        ]
        if not rows:
            return
        stmt = sqlite_insert(cache_records)
        stmt = stmt.on_conflict_do_update(
            index_elements=[cache_records.c.entity, cache_records.c.record_id],
            set_={"body": stmt.excluded.body, "stored_at": stmt.excluded.stored_at},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt, rows)

    def get(self, entity: str, record_id) -> dict | None:
        _check_entity(entity)
        with self.engine.connect() as conn:
            body = conn.execute(
                select(cache_records.c.body).where(
                    cache_records.c.entity == entity,
                    cache_records.c.record_id == str(record_id),
                )
            ).scalar()
        return json.loads(body) if body is not None else None

    def get_all(self, entity: str) -> list[dict]:
        _check_entity(entity)
        with self.engine.connect() as conn:
            bodies = conn.execute(
                select(cache_records.c.body)
                .where(cache_records.c.entity == entity)
                .order_by(cache_records.c.record_id.asc())
            ).scalars().all()
        return [json.loads(b) for b in bodies]

    def delete(self, entity: str, record_id) -> None:
        _check_entity(entity)
        with self.engine.begin() as conn:
            conn.execute(
                delete(cache_records).where(
                    cache_records.c.entity == entity,
                    cache_records.c.record_id == str(record_id),
                )
            )

    def replace_all(self, entity: str, records, *, keep=()) -> None:
        """
        Replace an entity cache wholesale with `records`.

        Ids listed in `keep` survive the wipe (temporary records whose create is
        still queued).
        """
        _check_entity(entity)
        keep = [str(k) for k in keep]
        rows = [
            {"entity": entity, "record_id": str(r["id"]), "body": dumps(r), "stored_at": utcnow()}
            for r in records
        ]
        with self.engine.begin() as conn:
            stmt = delete(cache_records).where(cache_records.c.entity == entity)
            if keep:
                stmt = stmt.where(cache_records.c.record_id.not_in(keep))
            conn.execute(stmt)
            if rows:
                conn.execute(insert(cache_records), rows)


@dataclass
class QueuedAction:
    qid: int
    kind: str
    method: str
    path: str
    body: object
    creates: str | None
    ts: datetime
    attempts: int = 0
    last_error: str | None = None
    last_status: int | None = None
    failure: str | None = None

    @classmethod
    def from_row(cls, row) -> "QueuedAction":
        return cls(
            qid=row.qid,
            kind=row.kind,
            method=row.method,
            path=row.path,
            body=json.loads(row.body) if row.body is not None else None,
            creates=row.creates,
            ts=row.ts,
            attempts=row.attempts,
            last_error=row.last_error,
            last_status=row.last_status,
            failure=row.failure,
        )

    def to_dict(self) -> dict:
        return {
            "qid": self.qid,
            "kind": self.kind,
            "method": self.method,
            "path": self.path,
            "body": self.body,
            "creates": self.creates,
            "ts": to_utc_z(self.ts),
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_status": self.last_status,
            "failure": self.failure,
        }


class PendingActionQueue:
    """Durable FIFO of writes awaiting replay."""

    def __init__(self, engine):
        self.engine = engine

    def enqueue(self, *, kind: str, method: str, path: str, body=None, creates: str | None = None) -> QueuedAction:
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(pending_actions).values(
                    kind=kind,
                    method=method.upper(),
                    path=path,
                    body=dumps(body) if body is not None else None,
                    creates=creates,
                    ts=utcnow(),
                )
            )
            qid = result.inserted_primary_key[0]
        logger.info("Queued %s %s %s as qid=%s", kind, method.upper(), path, qid)
        return self.get(qid)

    def get(self, qid: int) -> QueuedAction | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(pending_actions).where(pending_actions.c.qid == qid)).first()
        return QueuedAction.from_row(row) if row is not None else None

    def first(self) -> QueuedAction | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(pending_actions).order_by(pending_actions.c.qid.asc()).limit(1)
            ).first()
        return QueuedAction.from_row(row) if row is not None else None

    def list_all(self) -> list[QueuedAction]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(pending_actions).order_by(pending_actions.c.qid.asc())).all()
        return [QueuedAction.from_row(r) for r in rows]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(pending_actions)).scalar_one()

    def remove(self, qid: int) -> bool:
        with self.engine.begin() as conn:
            removed = conn.execute(delete(pending_actions).where(pending_actions.c.qid == qid)).rowcount
        return removed > 0

    def pending_creates(self) -> set[str]:
        """Temporary ids whose create is still waiting in the queue."""
        with self.engine.connect() as conn:
            values = conn.execute(
                select(pending_actions.c.creates).where(pending_actions.c.creates.is_not(None))
            ).scalars().all()
        return set(values)

    def record_failure(self, qid: int, *, error: str, status: int | None, failure: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(pending_actions)
                .where(pending_actions.c.qid == qid)
                .values(
                    attempts=pending_actions.c.attempts + 1,
                    last_error=error,
                    last_status=status,
                    failure=failure,
                )
            )

    def rewrite_reference(self, temp: str, confirmed: int) -> int:
        """
        Point every queued path and body at the confirmed id instead of `temp`.

        Returns the number of entries changed.
        """
        changed = 0
        with self.engine.begin() as conn:
            rows = conn.execute(select(pending_actions).order_by(pending_actions.c.qid.asc())).all()
            for row in rows:
                path = _rewrite_path(row.path, temp, confirmed)
                body = row.body
                if body is not None:
                    body = dumps(rewrite_value(json.loads(body), temp, confirmed))
                if path == row.path and body == row.body:
                    continue
                conn.execute(
                    update(pending_actions)
                    .where(pending_actions.c.qid == row.qid)
                    .values(path=path, body=body)
                )
                changed += 1
        return changed


class DeviceStore:
    """Cache and queue sharing one sqlite file."""

    def __init__(self, path: str):
        self.path = path
        self.engine = open_engine(path)
        self.cache = LocalCacheStore(self.engine)
        self.queue = PendingActionQueue(self.engine)

    def close(self) -> None:
        self.engine.dispose()
