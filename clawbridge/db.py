"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from clawbridge.models import ScheduledTask, StoredMessage

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management.

    Holds the conversation history, the string key-value config store,
    scheduled tasks and the tool execution log.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS messages (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                group_id TEXT NOT NULL,
                sender TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp REAL NOT NULL,
                channel TEXT NOT NULL,
                is_from_me INTEGER NOT NULL,
                is_trigger INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_group ON messages(group_id, seq);

            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS scheduled_tasks (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL,
                schedule TEXT NOT NULL,
                prompt TEXT NOT NULL,
                enabled INTEGER NOT NULL,
                last_run REAL,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at REAL NOT NULL
            );
            """
        )

    # -- messages ----------------------------------------------------------

    def save_message(self, message: StoredMessage) -> None:
        with self._connect() as conn:
            self._insert_message(conn, message)

    def _insert_message(self, conn: sqlite3.Connection, message: StoredMessage) -> None:
        conn.execute(
            """
            INSERT INTO messages(id, group_id, sender, content, timestamp, channel, is_from_me, is_trigger)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.group_id,
                message.sender,
                message.content,
                message.timestamp,
                message.channel,
                int(message.is_from_me),
                int(message.is_trigger),
            ),
        )

    def get_recent_messages(self, group_id: str, limit: int) -> list[StoredMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, group_id, sender, content, timestamp, channel, is_from_me, is_trigger
                FROM messages
                WHERE group_id = ?
                ORDER BY seq DESC
                LIMIT ?
                """,
                (group_id, limit),
            ).fetchall()
        return [_row_to_message(row) for row in reversed(rows)]

    def build_conversation_messages(self, group_id: str, limit: int) -> list[dict[str, Any]]:
        """Return the recent history window in the native message schema."""

        conversation: list[dict[str, Any]] = []
        for message in self.get_recent_messages(group_id, limit):
            if message.is_from_me:
                conversation.append({"role": "assistant", "content": message.content})
            else:
                conversation.append({"role": "user", "content": f"{message.sender}: {message.content}"})
        return conversation

    def clear_group_messages(self, group_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE group_id = ?", (group_id,))

    def replace_group_messages(self, group_id: str, message: StoredMessage) -> None:
        """Swap the whole group history for a single message in one transaction."""

        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE group_id = ?", (group_id,))
            self._insert_message(conn, message)

    # -- config ------------------------------------------------------------

    def get_config(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_config(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO config(key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    # -- scheduled tasks ---------------------------------------------------

    def save_task(self, task: ScheduledTask) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO scheduled_tasks(id, group_id, schedule, prompt, enabled, last_run, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    schedule = excluded.schedule,
                    prompt = excluded.prompt,
                    enabled = excluded.enabled,
                    last_run = excluded.last_run
                """,
                (
                    task.id,
                    task.group_id,
                    task.schedule,
                    task.prompt,
                    int(task.enabled),
                    task.last_run,
                    task.created_at,
                ),
            )

    def list_tasks(self, enabled_only: bool = False) -> list[ScheduledTask]:
        query = "SELECT id, group_id, schedule, prompt, enabled, last_run, created_at FROM scheduled_tasks"
        if enabled_only:
            query += " WHERE enabled = 1"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY created_at ASC").fetchall()
        return [
            ScheduledTask(
                id=row["id"],
                group_id=row["group_id"],
                schedule=row["schedule"],
                prompt=row["prompt"],
                enabled=bool(row["enabled"]),
                last_run=row["last_run"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def mark_task_run(self, task_id: str, ran_at: float) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE scheduled_tasks SET last_run = ? WHERE id = ?", (ran_at, task_id))

    # -- tool log ----------------------------------------------------------

    def log_tool_execution(
        self,
        group_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: str,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(group_id, tool_name, input_json, output, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (group_id, tool_name, json.dumps(tool_input), tool_output, int(succeeded), time.time()),
            )


def _row_to_message(row: sqlite3.Row) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        group_id=row["group_id"],
        sender=row["sender"],
        content=row["content"],
        timestamp=row["timestamp"],
        channel=row["channel"],
        is_from_me=bool(row["is_from_me"]),
        is_trigger=bool(row["is_trigger"]),
    )
