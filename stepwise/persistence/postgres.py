"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import asyncpg

from ..constants import ExecutionStatus, JobStatus
from ..errors import TransactionError
from .models import Execution, Job, Node, Workflow
from .repository import ExecutionRepository


class PostgresTransaction:
    """A connection holding an open ``asyncpg`` transaction."""

    def __init__(self, conn: asyncpg.Connection, transaction: Any) -> None:
        self.conn = conn
        self._transaction = transaction
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def ensure_active(self) -> None:
        if not self._active:
            raise TransactionError("transaction already finished")

    async def commit(self) -> None:
        self.ensure_active()
        self._active = False
        try:
            await self._transaction.commit()
        finally:
            await self.conn.close()

    async def rollback(self) -> None:
        self.ensure_active()
        self._active = False
        try:
            await self._transaction.rollback()
        finally:
            await self.conn.close()


class PostgresExecutionRepository(ExecutionRepository):
    """Persist templates and execution state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id BIGINT PRIMARY KEY,
                title TEXT,
                enabled BOOLEAN NOT NULL DEFAULT TRUE
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS nodes (
                id BIGINT PRIMARY KEY,
                workflow_id BIGINT NOT NULL,
                type TEXT NOT NULL,
                title TEXT,
                config JSONB,
                upstream_id BIGINT,
                downstream_id BIGINT,
                branch_index INTEGER
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id BIGSERIAL PRIMARY KEY,
                workflow_id BIGINT NOT NULL,
                context JSONB,
                status SMALLINT NOT NULL,
                created_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id BIGSERIAL PRIMARY KEY,
                execution_id BIGINT NOT NULL,
                node_id BIGINT NOT NULL,
                upstream_id BIGINT,
                status SMALLINT NOT NULL,
                result JSONB,
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ,
                UNIQUE (execution_id, node_id)
            )
            """
        )

    async def _acquire(self, transaction: Any) -> tuple[asyncpg.Connection, bool]:
        """Return a connection and whether the caller must close it."""
        if transaction is None:
            return await self._connect(), True
        if not isinstance(transaction, PostgresTransaction):
            raise TransactionError(
                f"unsupported transaction handle {type(transaction).__name__}"
            )
        transaction.ensure_active()
        return transaction.conn, False

    # ------------------------------------------------------------------
    @staticmethod
    def _to_node(r: asyncpg.Record) -> Node:
        return Node(
            id=r["id"],
            workflow_id=r["workflow_id"],
            type=r["type"],
            title=r["title"],
            config=json.loads(r["config"]) if r["config"] else {},
            upstream_id=r["upstream_id"],
            downstream_id=r["downstream_id"],
            branch_index=r["branch_index"],
        )

    @staticmethod
    def _to_execution(r: asyncpg.Record) -> Execution:
        return Execution(
            id=r["id"],
            workflow_id=r["workflow_id"],
            context=json.loads(r["context"]) if r["context"] is not None else None,
            status=ExecutionStatus(r["status"]),
            created_at=r["created_at"],
        )

    @staticmethod
    def _to_job(r: asyncpg.Record) -> Job:
        return Job(
            id=r["id"],
            execution_id=r["execution_id"],
            node_id=r["node_id"],
            upstream_id=r["upstream_id"],
            status=JobStatus(r["status"]),
            result=json.loads(r["result"]) if r["result"] is not None else None,
            created_at=r["created_at"],
            updated_at=r["updated_at"],
        )

    # ------------------------------------------------------------------
    async def begin(self) -> PostgresTransaction:
        conn = await self._connect()
        transaction = conn.transaction()
        await transaction.start()
        return PostgresTransaction(conn, transaction)

    async def save_workflow(
        self, workflow: Workflow, nodes: list[Node], transaction: Any = None
    ) -> None:
        conn, owned = await self._acquire(transaction)
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO workflows (id, title, enabled) VALUES ($1, $2, $3)
                    ON CONFLICT (id) DO UPDATE SET title = EXCLUDED.title, enabled = EXCLUDED.enabled
                    """,
                    workflow.id,
                    workflow.title,
                    workflow.enabled,
                )
                await conn.execute("DELETE FROM nodes WHERE workflow_id = $1", workflow.id)
                await conn.executemany(
                    """
                    INSERT INTO nodes (id, workflow_id, type, title, config, upstream_id, downstream_id, branch_index)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
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
        finally:
            if owned:
                await conn.close()

    async def load_workflow(self, workflow_id: int, transaction: Any = None) -> Workflow | None:
        conn, owned = await self._acquire(transaction)
        try:
            row = await conn.fetchrow(
                "SELECT id, title, enabled FROM workflows WHERE id = $1", workflow_id
            )
        finally:
            if owned:
                await conn.close()
        if not row:
            return None
        return Workflow(id=row["id"], title=row["title"], enabled=row["enabled"])

    async def load_nodes(self, workflow_id: int, transaction: Any = None) -> list[Node]:
        conn, owned = await self._acquire(transaction)
        try:
            rows = await conn.fetch(
                "SELECT * FROM nodes WHERE workflow_id = $1 ORDER BY id", workflow_id
            )
        finally:
            if owned:
                await conn.close()
        return [self._to_node(r) for r in rows]

    async def create_execution(
        self, workflow_id: int, context: Any = None, transaction: Any = None
    ) -> Execution:
        conn, owned = await self._acquire(transaction)
        try:
            row = await conn.fetchrow(
                """
                INSERT INTO executions (workflow_id, context, status, created_at)
                VALUES ($1, $2, $3, $4) RETURNING *
                """,
                workflow_id,
                json.dumps(context),
                int(ExecutionStatus.STARTED),
                datetime.utcnow(),
            )
        finally:
            if owned:
                await conn.close()
        return self._to_execution(row)

    async def get_execution(self, execution_id: int, transaction: Any = None) -> Execution | None:
        conn, owned = await self._acquire(transaction)
        try:
            row = await conn.fetchrow("SELECT * FROM executions WHERE id = $1", execution_id)
        finally:
            if owned:
                await conn.close()
        return self._to_execution(row) if row else None

    async def list_executions(self) -> list[Execution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT * FROM executions ORDER BY id")
        finally:
            await conn.close()
        return [self._to_execution(r) for r in rows]

    async def load_jobs(self, execution_id: int, transaction: Any = None) -> list[Job]:
        conn, owned = await self._acquire(transaction)
        try:
            rows = await conn.fetch(
                "SELECT * FROM jobs WHERE execution_id = $1 ORDER BY id", execution_id
            )
        finally:
            if owned:
                await conn.close()
        return [self._to_job(r) for r in rows]

    async def get_job(self, job_id: int, transaction: Any = None) -> Job | None:
        conn, owned = await self._acquire(transaction)
        try:
            row = await conn.fetchrow("SELECT * FROM jobs WHERE id = $1", job_id)
        finally:
            if owned:
                await conn.close()
        return self._to_job(row) if row else None

    async def upsert_job(self, job: Job, transaction: Any = None) -> Job:
        now = datetime.utcnow()
        conn, owned = await self._acquire(transaction)
        try:
            row = await conn.fetchrow(
                """
                INSERT INTO jobs (execution_id, node_id, upstream_id, status, result, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $6)
                ON CONFLICT (execution_id, node_id)
                DO UPDATE SET status = EXCLUDED.status, result = EXCLUDED.result, updated_at = EXCLUDED.updated_at
                RETURNING *
                """,
                job.execution_id,
                job.node_id,
                job.upstream_id,
                int(job.status),
                json.dumps(job.result),
                now,
            )
        finally:
            if owned:
                await conn.close()
        return self._to_job(row)

    async def update_execution_status(
        self, execution_id: int, status: ExecutionStatus, transaction: Any = None
    ) -> None:
        conn, owned = await self._acquire(transaction)
        try:
            await conn.execute(
                "UPDATE executions SET status = $1 WHERE id = $2 AND status = $3",
                int(status),
                execution_id,
                int(ExecutionStatus.STARTED),
            )
        finally:
            if owned:
                await conn.close()
