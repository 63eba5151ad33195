"""
SQLite-backed registry shared by every dispatch process on a host.

Claims are a single conditional UPDATE (state must still equal the
expected state) checked through rowcount, so two processes that both saw
a polecat idle cannot both claim it.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from polecat.exceptions import DuplicateSandboxError
from polecat.models import Cleanliness, Sandbox, SandboxState, utc_now
from polecat.registry.base import SandboxRegistry

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {
    "id",
    "rig",
    "name",
    "clone_path",
    "created_at",
    "state",
    "cleanliness",
    "updated_at",
}

_COLUMNS = "rig, name, clone_path, created_at, state, cleanliness"


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.execute("PRAGMA busy_timeout=30000")
    conn.row_factory = sqlite3.Row
    return conn


def _row_to_sandbox(row: sqlite3.Row) -> Sandbox:
    return Sandbox(
        name=row["name"],
        rig=row["rig"],
        clone_path=row["clone_path"],
        created_at=datetime.fromisoformat(row["created_at"]),
        state=SandboxState(row["state"]),
        cleanliness=Cleanliness(row["cleanliness"]),
    )


class SQLiteRegistry(SandboxRegistry):
    """Registry persisted in a SQLite database file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        with closing(_connect(self.db_path)) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sandboxes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rig TEXT NOT NULL,
                    name TEXT NOT NULL,
                    clone_path TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    state TEXT NOT NULL,
                    cleanliness TEXT NOT NULL DEFAULT 'unknown',
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            # Names are unique per rig among live polecats only.
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_sandboxes_live_name
                ON sandboxes(rig, name) WHERE state != 'destroyed'
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_sandboxes_rig_state
                ON sandboxes(rig, state)
                """
            )
            conn.commit()
            columns = {
                row[1] for row in conn.execute("PRAGMA table_info(sandboxes)").fetchall()
            }

        missing = REQUIRED_COLUMNS - columns
        if missing:
            raise RuntimeError(
                f"sandboxes schema mismatch: missing {sorted(missing)}. "
                f"Remove {self.db_path} and retry."
            )

    def _query(self, sql: str, params: tuple) -> Iterator[sqlite3.Row]:
        with closing(_connect(self.db_path)) as conn:
            rows = conn.execute(sql, params).fetchall()
        return iter(rows)

    def list_idle(self, rig: str) -> List[Sandbox]:
        rows = self._query(
            f"SELECT {_COLUMNS} FROM sandboxes WHERE rig = ? AND state = ? ORDER BY id",
            (rig, SandboxState.IDLE.value),
        )
        return [_row_to_sandbox(row) for row in rows]

    def list(self, rig: str, *, include_destroyed: bool = False) -> List[Sandbox]:
        if include_destroyed:
            rows = self._query(
                f"SELECT {_COLUMNS} FROM sandboxes WHERE rig = ? ORDER BY id",
                (rig,),
            )
        else:
            rows = self._query(
                f"SELECT {_COLUMNS} FROM sandboxes WHERE rig = ? AND state != ? ORDER BY id",
                (rig, SandboxState.DESTROYED.value),
            )
        return [_row_to_sandbox(row) for row in rows]

    def get(self, rig: str, name: str) -> Optional[Sandbox]:
        rows = list(
            self._query(
                f"""
                SELECT {_COLUMNS} FROM sandboxes
                WHERE rig = ? AND name = ?
                ORDER BY (state = 'destroyed'), id DESC
                LIMIT 1
                """,
                (rig, name),
            )
        )
        return _row_to_sandbox(rows[0]) if rows else None

    def register(self, sandbox: Sandbox) -> Sandbox:
        now = utc_now().isoformat()
        with closing(_connect(self.db_path)) as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO sandboxes ({_COLUMNS}, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        sandbox.rig,
                        sandbox.name,
                        sandbox.clone_path,
                        sandbox.created_at.isoformat(),
                        sandbox.state.value,
                        sandbox.cleanliness.value,
                        now,
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                raise DuplicateSandboxError(sandbox.rig, sandbox.name) from exc
        logger.debug(
            "Registered polecat %s/%s (%s)", sandbox.rig, sandbox.name, sandbox.state.value
        )
        return sandbox

    def _compare_and_set(
        self,
        rig: str,
        name: str,
        expected: SandboxState,
        target: SandboxState,
    ) -> bool:
        with closing(_connect(self.db_path)) as conn:
            cursor = conn.execute(
                """
                UPDATE sandboxes
                SET state = ?, updated_at = ?
                WHERE rig = ? AND name = ? AND state = ?
                """,
                (target.value, utc_now().isoformat(), rig, name, expected.value),
            )
            conn.commit()
            swapped = cursor.rowcount > 0
        if swapped:
            logger.debug(
                "Polecat %s/%s: %s -> %s", rig, name, expected.value, target.value
            )
        return swapped
