"""Document store over SQLite with a change journal for live subscriptions.

The store exposes three logical collections (``agents``, ``tasks``,
``activities``). Every write appends a row to the ``changes`` journal inside
the same transaction, so subscribers in any process can poll the journal by
sequence number and observe inserts and updates in commit order.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, SQLModel, col, select

from mission_control.storage.alembic_runner import upgrade_head
from mission_control.storage.common import build_sqlite_engine, to_db_datetime, utc_now
from mission_control.storage.sqlmodel_models import (
    ActivityRecord,
    AgentRecord,
    AgentTask,
    ChangeEntry,
)

logger = logging.getLogger(__name__)

Predicate = ColumnElement[bool]


class Collection(str, Enum):
    """Logical collections of the persisted store."""

    AGENTS = "agents"
    TASKS = "tasks"
    ACTIVITIES = "activities"


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SNAPSHOT = "snapshot"


_MODELS: dict[Collection, type[SQLModel]] = {
    Collection.AGENTS: AgentRecord,
    Collection.TASKS: AgentTask,
    Collection.ACTIVITIES: ActivityRecord,
}
_PRIMARY_KEYS: dict[Collection, str] = {
    Collection.AGENTS: "agent_id",
    Collection.TASKS: "task_id",
    Collection.ACTIVITIES: "event_id",
}
_APPEND_ONLY = {Collection.ACTIVITIES}


@dataclass(slots=True, frozen=True)
class ChangeNotification:
    """One delivered change with the document state at delivery time."""

    seq: int
    collection: Collection
    doc_id: str
    kind: ChangeKind
    document: Any


class AppendOnlyViolation(RuntimeError):
    """Raised on an attempt to update an append-only collection."""


class DocumentStore:
    """Collection/document facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._changed = threading.Condition()

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session; callers commit through :meth:`commit`."""

        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    def commit(self, session: Session) -> None:
        """Commit and wake local subscribers."""

        session.commit()
        with self._changed:
            self._changed.notify_all()

    def record_change(
        self,
        session: Session,
        *,
        collection: Collection,
        doc_id: str,
        kind: ChangeKind,
    ) -> None:
        session.add(
            ChangeEntry(
                collection=collection.value,
                doc_id=doc_id,
                kind=kind.value,
                created_at=to_db_datetime(utc_now()),
            ),
        )

    def get(self, collection: Collection, doc_id: str) -> Any | None:
        model = _MODELS[collection]
        with self.session() as session:
            return session.get(model, doc_id)

    def create(self, collection: Collection, document: SQLModel) -> str:
        """Insert one document and journal the insert."""

        doc_id = str(getattr(document, _PRIMARY_KEYS[collection]))
        with self.session() as session:
            session.add(document)
            self.record_change(
                session,
                collection=collection,
                doc_id=doc_id,
                kind=ChangeKind.INSERT,
            )
            self.commit(session)
        return doc_id

    def update(
        self,
        collection: Collection,
        doc_id: str,
        values: dict[str, Any],
        *,
        where: Sequence[Predicate] = (),
    ) -> bool:
        """Field-level conditional update evaluated by the database.

        ``values`` may hold SQL expressions, so read-modify-write never happens
        in application code. Returns ``False`` when no row matched.
        """

        if collection in _APPEND_ONLY:
            raise AppendOnlyViolation(f"Collection {collection.value!r} is append-only.")
        model = _MODELS[collection]
        pk_column = getattr(model, _PRIMARY_KEYS[collection])
        with self.session() as session:
            result = session.exec(
                sa_update(model).where(col(pk_column) == doc_id, *where).values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self.record_change(
                session,
                collection=collection,
                doc_id=doc_id,
                kind=ChangeKind.UPDATE,
            )
            self.commit(session)
            return True

    def query(
        self,
        collection: Collection,
        *,
        where: Sequence[Predicate] = (),
        order_by: Sequence[Any] = (),
        limit: int | None = None,
    ) -> list[Any]:
        model = _MODELS[collection]
        statement = select(model).where(*where)
        if order_by:
            statement = statement.order_by(*order_by)
        if limit is not None:
            statement = statement.limit(limit)
        with self.session() as session:
            return list(session.exec(statement).all())

    def latest_seq(self) -> int:
        with self.session() as session:
            value = session.exec(select(func.max(ChangeEntry.seq))).one()
        return int(value or 0)

    def subscribe(
        self,
        collection: Collection,
        *,
        where: Sequence[Predicate] = (),
        replay: bool = True,
        batch_size: int = 500,
    ) -> Subscription:
        """Open a subscription to inserts/updates of one collection.

        With ``replay`` the first batch is a snapshot of every matching
        document that exists at subscription time.
        """

        return Subscription(
            store=self,
            collection=collection,
            where=tuple(where),
            cursor=self.latest_seq(),
            replay=replay,
            batch_size=batch_size,
        )

    def wait_for_change(self, timeout: float) -> None:
        with self._changed:
            self._changed.wait(timeout=timeout)

    def prune_changes(self, *, older_than: timedelta, now: datetime | None = None) -> int:
        """Delete journal rows older than the retention window."""

        cutoff = to_db_datetime((now or utc_now()) - older_than)
        with self.session() as session:
            result = session.exec(
                sa_delete(ChangeEntry).where(col(ChangeEntry.created_at) < cutoff),
            )
            session.commit()
            return int(result.rowcount or 0)

    def fetch_changes(
        self,
        collection: Collection,
        *,
        after_seq: int,
        where: Sequence[Predicate],
        limit: int,
    ) -> tuple[int, list[ChangeNotification]]:
        """Read journal entries after ``after_seq`` and resolve their documents."""

        model = _MODELS[collection]
        pk_name = _PRIMARY_KEYS[collection]
        with self.session() as session:
            entries = session.exec(
                select(ChangeEntry)
                .where(
                    ChangeEntry.collection == collection.value,
                    col(ChangeEntry.seq) > after_seq,
                )
                .order_by(col(ChangeEntry.seq).asc())
                .limit(limit),
            ).all()
            if not entries:
                return after_seq, []

            latest: dict[str, ChangeEntry] = {}
            for entry in entries:
                latest[entry.doc_id] = entry
            rows = session.exec(
                select(model).where(
                    col(getattr(model, pk_name)).in_(list(latest)),
                    *where,
                ),
            ).all()

        documents = {str(getattr(row, pk_name)): row for row in rows}
        notifications = [
            ChangeNotification(
                seq=int(entry.seq or 0),
                collection=collection,
                doc_id=doc_id,
                kind=ChangeKind(entry.kind),
                document=documents[doc_id],
            )
            for doc_id, entry in sorted(latest.items(), key=lambda item: item[1].seq or 0)
            if doc_id in documents
        ]
        return int(entries[-1].seq or after_seq), notifications


class Subscription:
    """Cursor over the change journal for one collection and predicate set."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: DocumentStore,
        collection: Collection,
        where: tuple[Predicate, ...],
        cursor: int,
        replay: bool,
        batch_size: int,
    ) -> None:
        self.store = store
        self.collection = collection
        self.where = where
        self.cursor = cursor
        self.batch_size = batch_size
        self._replay_pending = replay
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def poll(self) -> list[ChangeNotification]:
        """Return the next batch without blocking."""

        if self._closed:
            return []
        if self._replay_pending:
            self._replay_pending = False
            return self._snapshot()
        self.cursor, batch = self.store.fetch_changes(
            self.collection,
            after_seq=self.cursor,
            where=self.where,
            limit=self.batch_size,
        )
        return batch

    def drain(self, timeout: float = 0.0, *, interval: float = 0.25) -> list[ChangeNotification]:
        """Block up to ``timeout`` seconds for the next non-empty batch."""

        deadline = time.monotonic() + timeout
        while True:
            batch = self.poll()
            remaining = deadline - time.monotonic()
            if batch or remaining <= 0 or self._closed:
                return batch
            self.store.wait_for_change(min(interval, remaining))

    def _snapshot(self) -> list[ChangeNotification]:
        pk_name = _PRIMARY_KEYS[self.collection]
        rows = self.store.query(self.collection, where=self.where)
        return [
            ChangeNotification(
                seq=self.cursor,
                collection=self.collection,
                doc_id=str(getattr(row, pk_name)),
                kind=ChangeKind.SNAPSHOT,
                document=row,
            )
            for row in rows
        ]


class StreamConsumer:
    """Drain a subscription on a daemon thread and feed batches to ``apply``."""

    def __init__(
        self,
        *,
        subscription: Subscription,
        consumer: Any,
        name: str,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self.subscription = subscription
        self.consumer = consumer
        self.name = name
        self.poll_interval_seconds = poll_interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()
        logger.info("Stream consumer %s started", self.name)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self.subscription.close()
        self._thread.join(timeout=15)
        self._thread = None
        logger.info("Stream consumer %s stopped", self.name)

    def pump(self) -> int:
        """Apply one pending batch synchronously; returns delivered count."""

        batch = self.subscription.poll()
        if batch:
            self.consumer.apply(batch)
        return len(batch)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                batch = self.subscription.drain(timeout=self.poll_interval_seconds)
                if batch:
                    self.consumer.apply(batch)
            except Exception:
                logger.exception("Stream consumer %s error", self.name)
                self._stop.wait(timeout=5)
