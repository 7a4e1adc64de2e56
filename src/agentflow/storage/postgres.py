"""PostgreSQL-backed storage with automatic table migration.

Conditional updates are a single `UPDATE ... WHERE id = %s AND status = %s
RETURNING *` so two racing writers cannot both pass the status check.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from agentflow.market.models import Agent, AgentStatus, Task, TaskStatus

TASK_COLUMNS = frozenset(
    {
        "title",
        "description",
        "budget",
        "status",
        "creator_id",
        "assignee_id",
        "log_sequence_number",
        "payment_ref",
        "updated_at",
    }
)
AGENT_COLUMNS = frozenset(
    {
        "name",
        "description",
        "payout_account_id",
        "model",
        "status",
        "completed_count",
        "updated_at",
    }
)


class PostgresMarketplaceStorage:
    """Persist tasks and agents in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("AGENTFLOW_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id UUID PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    budget NUMERIC(20, 8) NOT NULL CHECK (budget > 0),
                    status TEXT NOT NULL,
                    creator_id TEXT NOT NULL,
                    assignee_id TEXT,
                    log_sequence_number BIGINT,
                    payment_ref TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_status
                ON tasks(status)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_created_at
                ON tasks(created_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agents (
                    agent_id UUID PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    payout_account_id TEXT NOT NULL,
                    model TEXT NOT NULL,
                    status TEXT NOT NULL,
                    completed_count INTEGER NOT NULL DEFAULT 0 CHECK (completed_count >= 0),
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_agents_created_at
                ON agents(created_at DESC)
                """)
            conn.commit()

    def insert_task(self, task: Task) -> Task:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO tasks (
                    task_id,
                    title,
                    description,
                    budget,
                    status,
                    creator_id,
                    assignee_id,
                    log_sequence_number,
                    payment_ref,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    task.task_id,
                    task.title,
                    task.description,
                    task.budget,
                    task.status.value,
                    task.creator_id,
                    task.assignee_id,
                    task.log_sequence_number,
                    task.payment_ref,
                    task.created_at,
                    task.updated_at,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist task")
        return self._row_to_task(row)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE task_id::text = %s",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        with self._lock, self._connect() as conn:
            if status is None:
                rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE status = %s ORDER BY created_at DESC",
                    (status.value,),
                ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def update_task(
        self,
        task_id: str,
        *,
        expected_status: TaskStatus | None = None,
        **changes: Any,
    ) -> Task | None:
        row = self._conditional_update(
            table="tasks",
            key_column="task_id",
            key=task_id,
            allowed=TASK_COLUMNS,
            expected_status=expected_status,
            changes=changes,
        )
        return self._row_to_task(row) if row is not None else None

    def insert_agent(self, agent: Agent) -> Agent:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO agents (
                    agent_id,
                    name,
                    description,
                    payout_account_id,
                    model,
                    status,
                    completed_count,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    agent.agent_id,
                    agent.name,
                    agent.description,
                    agent.payout_account_id,
                    agent.model,
                    agent.status.value,
                    agent.completed_count,
                    agent.created_at,
                    agent.updated_at,
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise RuntimeError("Failed to persist agent")
        return self._row_to_agent(row)

    def get_agent(self, agent_id: str) -> Agent | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agents WHERE agent_id::text = %s",
                (agent_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_agent(row)

    def list_agents(self) -> list[Agent]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM agents ORDER BY created_at DESC").fetchall()
        return [self._row_to_agent(row) for row in rows]

    def update_agent(
        self,
        agent_id: str,
        *,
        expected_status: AgentStatus | None = None,
        **changes: Any,
    ) -> Agent | None:
        row = self._conditional_update(
            table="agents",
            key_column="agent_id",
            key=agent_id,
            allowed=AGENT_COLUMNS,
            expected_status=expected_status,
            changes=changes,
        )
        return self._row_to_agent(row) if row is not None else None

    def _conditional_update(
        self,
        *,
        table: str,
        key_column: str,
        key: str,
        allowed: frozenset[str],
        expected_status: Enum | None,
        changes: dict[str, Any],
    ) -> Any:
        values = {**changes, "updated_at": datetime.now(tz=UTC)}
        unknown = set(values) - allowed
        if unknown:
            raise ValueError(f"Unknown fields for update: {sorted(unknown)}")

        # Column names come from the whitelist above, never from callers.
        assignments = ", ".join(f"{column} = %s" for column in values)
        params: list[Any] = [_adapt(value) for value in values.values()]
        query = f"UPDATE {table} SET {assignments} WHERE {key_column}::text = %s"
        params.append(key)
        if expected_status is not None:
            query += " AND status = %s"
            params.append(expected_status.value)
        query += " RETURNING *"

        with self._lock, self._connect() as conn:
            row = conn.execute(query, tuple(params)).fetchone()
            conn.commit()
        return row

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> Task:
        sequence_number = row.get("log_sequence_number")
        return Task(
            task_id=str(row["task_id"]),
            title=row["title"],
            description=row["description"],
            budget=Decimal(row["budget"]),
            status=TaskStatus(row["status"]),
            creator_id=row["creator_id"],
            assignee_id=row.get("assignee_id"),
            log_sequence_number=int(sequence_number) if sequence_number is not None else None,
            payment_ref=row.get("payment_ref"),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )

    @classmethod
    def _row_to_agent(cls, row: Any) -> Agent:
        return Agent(
            agent_id=str(row["agent_id"]),
            name=row["name"],
            description=row.get("description"),
            payout_account_id=row["payout_account_id"],
            model=row["model"],
            status=AgentStatus(row["status"]),
            completed_count=int(row["completed_count"]),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )


def _adapt(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value
