"""Version-checked persistence for allocator application aggregates."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Protocol

from allocator_bot.domain.allocator import AllocatorApplication
from allocator_bot.domain.errors import ConcurrencyConflictError, NotFoundError


class AllocatorRepository(Protocol):
    """Repository contract: load by id, save with the version read at load time."""

    def get_by_id(self, application_id: str) -> AllocatorApplication | None: ...

    def require(self, application_id: str) -> AllocatorApplication: ...

    def save(self, application: AllocatorApplication, expected_version: int) -> int: ...


class InMemoryAllocatorRepository:
    """Lock-guarded in-memory store used by tests and the in-memory backend."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_by_id(self, application_id: str) -> AllocatorApplication | None:
        with self._lock:
            record = self._records.get(application_id)
            if record is None:
                return None
            return AllocatorApplication.from_record(json.loads(json.dumps(record)))

    def require(self, application_id: str) -> AllocatorApplication:
        application = self.get_by_id(application_id)
        if application is None:
            raise NotFoundError(application_id)
        return application

    def save(self, application: AllocatorApplication, expected_version: int) -> int:
        with self._lock:
            stored = self._records.get(application.id)
            stored_version = int(stored["version"]) if stored is not None else None
            if expected_version == 0:
                if stored is not None:
                    raise ConcurrencyConflictError(application.id, expected_version, stored_version)
            elif stored_version != expected_version:
                raise ConcurrencyConflictError(application.id, expected_version, stored_version)
            new_version = expected_version + 1
            record = application.to_record()
            record["version"] = new_version
            self._records[application.id] = record
        application.version = new_version
        return new_version

    def list_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._records)


class SQLiteAllocatorRepository:
    """SQLite-backed repository using compare-and-swap updates on ``version``."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._configure_connection()
        self._init_schema()

    def _configure_connection(self) -> None:
        """Apply local-first SQLite settings for durability and concurrent reads."""

        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA temp_store=MEMORY")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS allocator_applications (
                id TEXT PRIMARY KEY,
                version INTEGER NOT NULL,
                application_number TEXT NOT NULL,
                phase TEXT NOT NULL,
                phase_status TEXT NOT NULL,
                record_json TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_allocator_applications_phase "
            "ON allocator_applications(phase, phase_status)"
        )
        self.conn.commit()

    def get_by_id(self, application_id: str) -> AllocatorApplication | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT version, record_json FROM allocator_applications WHERE id = ?",
                (application_id,),
            ).fetchone()
        if row is None:
            return None
        record = json.loads(row["record_json"])
        record["version"] = int(row["version"])
        return AllocatorApplication.from_record(record)

    def require(self, application_id: str) -> AllocatorApplication:
        application = self.get_by_id(application_id)
        if application is None:
            raise NotFoundError(application_id)
        return application

    def save(self, application: AllocatorApplication, expected_version: int) -> int:
        new_version = expected_version + 1
        record = application.to_record()
        record["version"] = new_version
        record_json = json.dumps(record, sort_keys=True)
        with self._lock:
            if expected_version == 0:
                cur = self.conn.execute(
                    """
                    INSERT OR IGNORE INTO allocator_applications
                        (id, version, application_number, phase, phase_status, record_json)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        application.id,
                        new_version,
                        application.applicant.application_number,
                        application.phase.value,
                        application.phase_status.value,
                        record_json,
                    ),
                )
            else:
                cur = self.conn.execute(
                    """
                    UPDATE allocator_applications
                    SET version = ?,
                        phase = ?,
                        phase_status = ?,
                        record_json = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND version = ?
                    """,
                    (
                        new_version,
                        application.phase.value,
                        application.phase_status.value,
                        record_json,
                        application.id,
                        expected_version,
                    ),
                )
            self.conn.commit()
            if int(cur.rowcount or 0) == 0:
                raise ConcurrencyConflictError(
                    application.id, expected_version, self._stored_version(application.id)
                )
        application.version = new_version
        return new_version

    def _stored_version(self, application_id: str) -> int | None:
        row = self.conn.execute(
            "SELECT version FROM allocator_applications WHERE id = ?", (application_id,)
        ).fetchone()
        return int(row["version"]) if row is not None else None

    def list_ids(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT id FROM allocator_applications ORDER BY id ASC"
            ).fetchall()
        return [str(row["id"]) for row in rows]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
