"""
Fiscal contingency state machine.

When the fiscal authority is unreachable, documents may be issued through a
recognised alternate path (``SVC-AN``, ``SVC-RS``, ``DPEC``, ``FS-DA``).
Contingency is a successful, auditable operating mode, not an error.

Manifesto:
    - **Two states:** ``Normal`` and ``Contingency(type)``
    - **Idempotent transitions:** ``enable`` from ``Contingency`` and
      ``disable`` from ``Normal`` are no-ops, whatever arguments are passed
    - **Append-only history:** records are closed, never deleted; at most
      one record per owner is active at a time
    - **Explicit only:** nothing leaves contingency on a timer

Architecture:
    ::

                 enable(type, reason)
        Normal ───────────────────────► Contingency(type)
          ▲                                    │
          └────────────── disable() ───────────┘

        ContingencyStateMachine(owner_id, store)
          └── ContingencyStore (Protocol)
                ├── InMemoryContingencyStore
                └── SqliteContingencyStore   (partial unique index on active)

Examples:
    >>> machine = ContingencyStateMachine("owner-1", InMemoryContingencyStore())
    >>> machine.enable(ContingencyType.SVC_AN, "service offline")
    True
    >>> machine.enable(ContingencyType.DPEC, "other reason")
    False
    >>> machine.status().contingency_type
    <ContingencyType.SVC_AN: 'SVC-AN'>

Tags:
    state-machine, contingency, fiscal, sqlite, audit, tether
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from tether.core.errors import ConfigError, ValidationError
from tether.core.logging import get_logger

logger = get_logger(__name__)


class ContingencyType(str, Enum):
    """Alternate issuance paths recognised by the fiscal authority."""

    SVC_AN = "SVC-AN"
    SVC_RS = "SVC-RS"
    DPEC = "DPEC"
    FS_DA = "FS-DA"

    @classmethod
    def parse(cls, raw: str | ContingencyType) -> ContingencyType:
        if isinstance(raw, ContingencyType):
            return raw
        try:
            return cls(raw.strip().upper().replace("_", "-"))
        except ValueError as e:
            allowed = ", ".join(member.value for member in cls)
            raise ValidationError(
                f"unknown contingency type {raw!r}; expected one of {allowed}",
                field="contingency_type",
                value=raw,
            ) from e


@dataclass(frozen=True)
class ContingencyRecord:
    """One contingency period for one owner."""

    owner_id: str
    contingency_type: ContingencyType
    reason: str
    started_at: datetime
    ended_at: datetime | None = None

    @property
    def active(self) -> bool:
        return self.ended_at is None

    def close(self, ended_at: datetime) -> ContingencyRecord:
        return replace(self, ended_at=ended_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "active": self.active,
            "contingency_type": self.contingency_type.value,
            "reason": self.reason,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


@dataclass(frozen=True)
class ContingencyStatus:
    """Current view of an owner's contingency state."""

    owner_id: str
    active: bool
    contingency_type: ContingencyType | None = None
    reason: str | None = None
    started_at: datetime | None = None

    @classmethod
    def normal(cls, owner_id: str) -> ContingencyStatus:
        return cls(owner_id=owner_id, active=False)

    @classmethod
    def from_record(cls, record: ContingencyRecord) -> ContingencyStatus:
        return cls(
            owner_id=record.owner_id,
            active=True,
            contingency_type=record.contingency_type,
            reason=record.reason,
            started_at=record.started_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "active": self.active,
            "contingency_type": self.contingency_type.value if self.contingency_type else None,
            "reason": self.reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


# ── Stores ───────────────────────────────────────────────────────────────


class ContingencyStore(Protocol):
    """Persistence for contingency history."""

    def active(self, owner_id: str) -> ContingencyRecord | None: ...

    def open(self, record: ContingencyRecord) -> bool: ...

    def close(self, owner_id: str, ended_at: datetime) -> ContingencyRecord | None: ...

    def history(self, owner_id: str) -> list[ContingencyRecord]: ...


class InMemoryContingencyStore:
    """Process-local store for tests and single-process use."""

    def __init__(self) -> None:
        self._records: list[ContingencyRecord] = []

    def active(self, owner_id: str) -> ContingencyRecord | None:
        for record in self._records:
            if record.owner_id == owner_id and record.active:
                return record
        return None

    def open(self, record: ContingencyRecord) -> bool:
        if self.active(record.owner_id) is not None:
            return False
        self._records.append(record)
        return True

    def close(self, owner_id: str, ended_at: datetime) -> ContingencyRecord | None:
        for index, record in enumerate(self._records):
            if record.owner_id == owner_id and record.active:
                closed = record.close(ended_at)
                self._records[index] = closed
                return closed
        return None

    def history(self, owner_id: str) -> list[ContingencyRecord]:
        return [record for record in self._records if record.owner_id == owner_id]


class SqliteContingencyStore:
    """SQLite-backed store.

    A partial unique index on ``(owner_id) WHERE ended_at IS NULL`` makes
    "at most one active record per owner" a database invariant.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS fiscal_contingency (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            contingency_type TEXT NOT NULL,
            reason TEXT NOT NULL,
            started_at TEXT NOT NULL,
            ended_at TEXT
        );
        CREATE UNIQUE INDEX IF NOT EXISTS uq_fiscal_contingency_active
            ON fiscal_contingency (owner_id) WHERE ended_at IS NULL;
        CREATE INDEX IF NOT EXISTS ix_fiscal_contingency_owner
            ON fiscal_contingency (owner_id, started_at);
    """

    def __init__(self, path: str | Path = ":memory:", *, timeout: float = 5.0):
        self.path = str(path)
        try:
            self._conn = sqlite3.connect(self.path, timeout=timeout, check_same_thread=False)
        except sqlite3.Error as e:
            raise ConfigError(f"Failed to open contingency database {self.path}: {e}", cause=e) from e
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(self.SCHEMA)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ContingencyRecord:
        return ContingencyRecord(
            owner_id=row["owner_id"],
            contingency_type=ContingencyType(row["contingency_type"]),
            reason=row["reason"],
            started_at=datetime.fromisoformat(row["started_at"]),
            ended_at=datetime.fromisoformat(row["ended_at"]) if row["ended_at"] else None,
        )

    def active(self, owner_id: str) -> ContingencyRecord | None:
        row = self._conn.execute(
            "SELECT * FROM fiscal_contingency WHERE owner_id = ? AND ended_at IS NULL",
            (owner_id,),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def open(self, record: ContingencyRecord) -> bool:
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO fiscal_contingency (owner_id, contingency_type, reason, started_at) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        record.owner_id,
                        record.contingency_type.value,
                        record.reason,
                        record.started_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def close(self, owner_id: str, ended_at: datetime) -> ContingencyRecord | None:
        current = self.active(owner_id)
        if current is None:
            return None
        with self._transaction() as conn:
            conn.execute(
                "UPDATE fiscal_contingency SET ended_at = ? WHERE owner_id = ? AND ended_at IS NULL",
                (ended_at.isoformat(), owner_id),
            )
        return current.close(ended_at)

    def history(self, owner_id: str) -> list[ContingencyRecord]:
        rows = self._conn.execute(
            "SELECT * FROM fiscal_contingency WHERE owner_id = ? ORDER BY id",
            (owner_id,),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def close_connection(self) -> None:
        self._conn.close()


# ── State machine ────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ContingencyStateMachine:
    """Normal / Contingency(type) for one owner, persisted in a store."""

    def __init__(
        self,
        owner_id: str,
        store: ContingencyStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.owner_id = owner_id
        self.store = store
        self._clock = clock

    def status(self) -> ContingencyStatus:
        record = self.store.active(self.owner_id)
        if record is None:
            return ContingencyStatus.normal(self.owner_id)
        return ContingencyStatus.from_record(record)

    @property
    def active_type(self) -> ContingencyType | None:
        record = self.store.active(self.owner_id)
        return record.contingency_type if record else None

    def enable(self, contingency_type: ContingencyType | str, reason: str) -> bool:
        """Enter contingency. Returns False (no-op) if already in contingency."""
        existing = self.store.active(self.owner_id)
        if existing is not None:
            logger.info(
                "contingency.enable_ignored",
                owner_id=self.owner_id,
                active_type=existing.contingency_type.value,
                requested_type=getattr(contingency_type, "value", contingency_type),
            )
            return False
        kind = ContingencyType.parse(contingency_type)
        opened = self.store.open(
            ContingencyRecord(
                owner_id=self.owner_id,
                contingency_type=kind,
                reason=reason,
                started_at=self._clock(),
            )
        )
        if opened:
            logger.warning(
                "contingency.enabled",
                owner_id=self.owner_id,
                contingency_type=kind.value,
                reason=reason,
            )
        return opened

    def disable(self) -> bool:
        """Leave contingency. Returns False (no-op) if not in contingency."""
        closed = self.store.close(self.owner_id, self._clock())
        if closed is None:
            return False
        logger.info(
            "contingency.disabled",
            owner_id=self.owner_id,
            contingency_type=closed.contingency_type.value,
            started_at=closed.started_at.isoformat(),
        )
        return True

    def history(self) -> list[ContingencyRecord]:
        return self.store.history(self.owner_id)


__all__ = [
    "ContingencyType",
    "ContingencyRecord",
    "ContingencyStatus",
    "ContingencyStore",
    "InMemoryContingencyStore",
    "SqliteContingencyStore",
    "ContingencyStateMachine",
]
