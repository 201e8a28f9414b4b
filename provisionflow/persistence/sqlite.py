"""SQLite implementation of the operation registry."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..contracts import WorkflowExecution
from .repository import OperationRegistry


class SQLiteOperationRegistry(OperationRegistry):
    """Persist run records using SQLite, one JSON document per execution."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                document TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Registry API
    async def get(self, execution_id: str) -> WorkflowExecution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM executions WHERE execution_id = ?",
            execution_id,
        )
        if not row:
            return None
        return WorkflowExecution.from_json(row["document"])

    async def put(self, execution: WorkflowExecution) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO executions (execution_id, workflow_id, status, started_at, document)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(execution_id) DO UPDATE SET
                status = excluded.status,
                document = excluded.document
            """,
            execution.execution_id,
            execution.workflow_id,
            execution.status.value,
            execution.started_at.isoformat(),
            execution.to_json(),
        )

    async def delete(self, execution_id: str) -> bool:
        removed = await asyncio.to_thread(
            self._execute,
            "DELETE FROM executions WHERE execution_id = ?",
            execution_id,
        )
        return removed > 0

    async def list(self) -> list[WorkflowExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT document FROM executions ORDER BY started_at",
        )
        return [WorkflowExecution.from_json(row["document"]) for row in rows]
