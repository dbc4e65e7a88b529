"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..constants import ExecutionStatus, JobStatus
from ..errors import TransactionError
from .models import Execution, Job, Node, Workflow
from .repository import ExecutionRepository

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS workflows (
        id INTEGER PRIMARY KEY,
        title TEXT,
        enabled INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS nodes (
        id INTEGER PRIMARY KEY,
        workflow_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        title TEXT,
        config TEXT,
        upstream_id INTEGER,
        downstream_id INTEGER,
        branch_index INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS executions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        workflow_id INTEGER NOT NULL,
        context TEXT,
        status INTEGER NOT NULL,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        execution_id INTEGER NOT NULL,
        node_id INTEGER NOT NULL,
        upstream_id INTEGER,
        status INTEGER NOT NULL,
        result TEXT,
        created_at TEXT,
        updated_at TEXT,
        UNIQUE (execution_id, node_id)
    )
    """,
)


class SQLiteTransaction:
    """A dedicated connection with an open ``BEGIN``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def ensure_active(self) -> None:
        if not self._active:
            raise TransactionError("transaction already finished")

    def _finish(self, statement: str) -> None:
        try:
            self.conn.execute(statement)
        finally:
            self.conn.close()

    async def commit(self) -> None:
        self.ensure_active()
        self._active = False
        await asyncio.to_thread(self._finish, "COMMIT")

    async def rollback(self) -> None:
        self.ensure_active()
        self._active = False
        await asyncio.to_thread(self._finish, "ROLLBACK")


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist templates and execution state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = self._open()
        self._ensure_schema()

    def _open(self) -> sqlite3.Connection:
        # autocommit mode; transactions are opened explicitly with BEGIN
        conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=30
        )
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        for statement in _SCHEMA:
            cur.execute(statement)

    # ------------------------------------------------------------------
    # Helper methods
    def _connection(self, transaction: Any) -> sqlite3.Connection:
        if transaction is None:
            return self._conn
        if not isinstance(transaction, SQLiteTransaction):
            raise TransactionError(
                f"unsupported transaction handle {type(transaction).__name__}"
            )
        transaction.ensure_active()
        return transaction.conn

    @staticmethod
    def _execute(conn: sqlite3.Connection, query: str, *params: Any) -> int | None:
        cur = conn.cursor()
        cur.execute(query, params)
        return cur.lastrowid

    @staticmethod
    def _fetchone(conn: sqlite3.Connection, query: str, *params: Any) -> sqlite3.Row | None:
        cur = conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    @staticmethod
    def _fetchall(conn: sqlite3.Connection, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _begin(self) -> sqlite3.Connection:
        conn = self._open()
        conn.execute("BEGIN")
        return conn

    def _replace_workflow(
        self, conn: sqlite3.Connection, workflow: Workflow, nodes: list[Node]
    ) -> None:
        in_transaction = conn.in_transaction
        if not in_transaction:
            conn.execute("BEGIN")
        try:
            conn.execute(
                "INSERT OR REPLACE INTO workflows (id, title, enabled) VALUES (?, ?, ?)",
                (workflow.id, workflow.title, int(workflow.enabled)),
            )
            conn.execute("DELETE FROM nodes WHERE workflow_id = ?", (workflow.id,))
            conn.executemany(
                """
                INSERT INTO nodes (id, workflow_id, type, title, config, upstream_id, downstream_id, branch_index)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        n.id,
                        workflow.id,
                        n.type,
                        n.title,
                        json.dumps(n.config),
                        n.upstream_id,
                        n.downstream_id,
                        n.branch_index,
                    )
                    for n in nodes
                ],
            )
        except Exception:
            if not in_transaction:
                conn.execute("ROLLBACK")
            raise
        if not in_transaction:
            conn.execute("COMMIT")

    def _upsert_job(self, conn: sqlite3.Connection, job: Job) -> sqlite3.Row:
        now = datetime.utcnow().isoformat()
        conn.execute(
            """
            INSERT INTO jobs (execution_id, node_id, upstream_id, status, result, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (execution_id, node_id)
            DO UPDATE SET status = excluded.status, result = excluded.result, updated_at = excluded.updated_at
            """,
            (
                job.execution_id,
                job.node_id,
                job.upstream_id,
                int(job.status),
                json.dumps(job.result),
                now,
                now,
            ),
        )
        return conn.execute(
            "SELECT * FROM jobs WHERE execution_id = ? AND node_id = ?",
            (job.execution_id, job.node_id),
        ).fetchone()

    # ------------------------------------------------------------------
    # Row mapping
    @staticmethod
    def _to_node(row: sqlite3.Row) -> Node:
        return Node(
            id=row["id"],
            workflow_id=row["workflow_id"],
            type=row["type"],
            title=row["title"],
            config=json.loads(row["config"]) if row["config"] else {},
            upstream_id=row["upstream_id"],
            downstream_id=row["downstream_id"],
            branch_index=row["branch_index"],
        )

    @staticmethod
    def _to_execution(row: sqlite3.Row) -> Execution:
        return Execution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            context=json.loads(row["context"]) if row["context"] else None,
            status=ExecutionStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
        )

    @staticmethod
    def _to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            execution_id=row["execution_id"],
            node_id=row["node_id"],
            upstream_id=row["upstream_id"],
            status=JobStatus(row["status"]),
            result=json.loads(row["result"]) if row["result"] else None,
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    # ------------------------------------------------------------------
    # Repository API
    async def begin(self) -> SQLiteTransaction:
        conn = await asyncio.to_thread(self._begin)
        return SQLiteTransaction(conn)

    async def save_workflow(
        self, workflow: Workflow, nodes: list[Node], transaction: Any = None
    ) -> None:
        conn = self._connection(transaction)
        await asyncio.to_thread(self._replace_workflow, conn, workflow, nodes)

    async def load_workflow(self, workflow_id: int, transaction: Any = None) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            self._connection(transaction),
            "SELECT id, title, enabled FROM workflows WHERE id = ?",
            workflow_id,
        )
        if not row:
            return None
        return Workflow(id=row["id"], title=row["title"], enabled=bool(row["enabled"]))

    async def load_nodes(self, workflow_id: int, transaction: Any = None) -> list[Node]:
        rows = await asyncio.to_thread(
            self._fetchall,
            self._connection(transaction),
            "SELECT * FROM nodes WHERE workflow_id = ? ORDER BY id",
            workflow_id,
        )
        return [self._to_node(r) for r in rows]

    async def create_execution(
        self, workflow_id: int, context: Any = None, transaction: Any = None
    ) -> Execution:
        created_at = datetime.utcnow()
        execution_id = await asyncio.to_thread(
            self._execute,
            self._connection(transaction),
            "INSERT INTO executions (workflow_id, context, status, created_at) VALUES (?, ?, ?, ?)",
            workflow_id,
            json.dumps(context),
            int(ExecutionStatus.STARTED),
            created_at.isoformat(),
        )
        return Execution(
            id=execution_id,
            workflow_id=workflow_id,
            context=context,
            status=ExecutionStatus.STARTED,
            created_at=created_at,
        )

    async def get_execution(self, execution_id: int, transaction: Any = None) -> Execution | None:
        row = await asyncio.to_thread(
            self._fetchone,
            self._connection(transaction),
            "SELECT * FROM executions WHERE id = ?",
            execution_id,
        )
        return self._to_execution(row) if row else None

    async def list_executions(self) -> list[Execution]:
        rows = await asyncio.to_thread(
            self._fetchall, self._conn, "SELECT * FROM executions ORDER BY id"
        )
        return [self._to_execution(r) for r in rows]

    async def load_jobs(self, execution_id: int, transaction: Any = None) -> list[Job]:
        rows = await asyncio.to_thread(
            self._fetchall,
            self._connection(transaction),
            "SELECT * FROM jobs WHERE execution_id = ? ORDER BY id",
            execution_id,
        )
        return [self._to_job(r) for r in rows]

    async def get_job(self, job_id: int, transaction: Any = None) -> Job | None:
        row = await asyncio.to_thread(
            self._fetchone,
            self._connection(transaction),
            "SELECT * FROM jobs WHERE id = ?",
            job_id,
        )
        return self._to_job(row) if row else None

    async def upsert_job(self, job: Job, transaction: Any = None) -> Job:
        row = await asyncio.to_thread(self._upsert_job, self._connection(transaction), job)
        return self._to_job(row)

    async def update_execution_status(
        self, execution_id: int, status: ExecutionStatus, transaction: Any = None
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            self._connection(transaction),
            "UPDATE executions SET status = ? WHERE id = ? AND status = ?",
            int(status),
            execution_id,
            int(ExecutionStatus.STARTED),
        )
