"""
SQLite Config Store.

Durable storage for channel mappings, guild defaults, webhook registrations
and the audit/analytics logs.

Queries run in a worker thread via asyncio.to_thread, serialised by a lock on
the single connection, so each call is a suspension point for the event loop.
Uniqueness (one mapping per channel, one default per guild, one webhook per
board, one row per audit event) is enforced by the schema.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from boardrelay.config.schemas import (
    AuditEvent,
    ChannelMapping,
    DefaultConfig,
    MetricRecord,
    Severity,
    WebhookRegistration,
)
from boardrelay.errors import StoreUnavailable, WebhookConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_VERSION = "2.0.0"

SCHEMA = """
CREATE TABLE IF NOT EXISTS channel_mappings (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id    TEXT NOT NULL,
    channel_id  TEXT NOT NULL,
    board_id    TEXT NOT NULL,
    list_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    UNIQUE(guild_id, channel_id)
);

CREATE TABLE IF NOT EXISTS default_configs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id          TEXT NOT NULL UNIQUE,
    default_board_id  TEXT NOT NULL,
    default_list_id   TEXT NOT NULL,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS webhook_registrations (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    board_id      TEXT NOT NULL UNIQUE,
    webhook_id    TEXT NOT NULL,
    callback_url  TEXT NOT NULL,
    description   TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id     TEXT NOT NULL UNIQUE,
    guild_id     TEXT NOT NULL,
    user_id      TEXT NOT NULL,
    user_tag     TEXT,
    action       TEXT NOT NULL,
    category     TEXT NOT NULL,
    target_type  TEXT,
    target_id    TEXT,
    details      TEXT,
    severity     INTEGER NOT NULL,
    success      INTEGER NOT NULL DEFAULT 1,
    timestamp    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS usage_analytics (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id        TEXT NOT NULL UNIQUE,
    guild_id        TEXT NOT NULL,
    channel_id      TEXT NOT NULL,
    user_id         TEXT NOT NULL,
    command         TEXT NOT NULL,
    command_args    TEXT,
    execution_time  REAL,
    success         INTEGER NOT NULL,
    error_message   TEXT,
    board_id        TEXT,
    timestamp       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS db_metadata (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_channel_mappings_board ON channel_mappings(board_id);
CREATE INDEX IF NOT EXISTS idx_default_configs_board ON default_configs(default_board_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_guild_timestamp ON audit_log(guild_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_usage_analytics_guild_timestamp ON usage_analytics(guild_id, timestamp DESC);
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# Row conversion
# =============================================================================


def _mapping_from_row(row: sqlite3.Row) -> ChannelMapping:
    return ChannelMapping(
        guild_id=row["guild_id"],
        channel_id=row["channel_id"],
        board_id=row["board_id"],
        list_id=row["list_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _default_from_row(row: sqlite3.Row) -> DefaultConfig:
    return DefaultConfig(
        guild_id=row["guild_id"],
        board_id=row["default_board_id"],
        list_id=row["default_list_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _registration_from_row(row: sqlite3.Row) -> WebhookRegistration:
    return WebhookRegistration(
        board_id=row["board_id"],
        webhook_id=row["webhook_id"],
        callback_url=row["callback_url"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _audit_from_row(row: sqlite3.Row) -> AuditEvent:
    return AuditEvent(
        event_id=row["event_id"],
        timestamp=row["timestamp"],
        guild_id=row["guild_id"],
        user_id=row["user_id"],
        user_tag=row["user_tag"],
        action=row["action"],
        category=row["category"],
        target_type=row["target_type"],
        target_id=row["target_id"],
        details=row["details"],
        severity=Severity(row["severity"]),
        success=bool(row["success"]),
    )


def _metric_from_row(row: sqlite3.Row) -> MetricRecord:
    return MetricRecord(
        event_id=row["event_id"],
        timestamp=row["timestamp"],
        guild_id=row["guild_id"],
        channel_id=row["channel_id"],
        user_id=row["user_id"],
        command=row["command"],
        command_args=row["command_args"],
        execution_time_ms=row["execution_time"] or 0.0,
        success=bool(row["success"]),
        error_message=row["error_message"],
        board_id=row["board_id"],
    )


# =============================================================================
# Store
# =============================================================================


class SQLiteConfigStore:
    """
    ConfigStore backed by a single SQLite database file.

    Usage:
        store = SQLiteConfigStore("./data/boardrelay.db")
        await store.init()
        mapping = await store.upsert_channel_mapping(guild, channel, board, lst)
        await store.close()

    Use ":memory:" as the path for a throwaway database.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def init(self) -> None:
        """Open the database and apply the schema."""
        if self._conn is not None:
            return
        try:
            await asyncio.to_thread(self._open)
        except sqlite3.Error as e:
            raise StoreUnavailable("init", e) from e
        logger.info(f"[store] SQLite config store ready at {self.path}")

    def _open(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000;")
        with self._lock:
            with conn:
                conn.executescript(SCHEMA)
                conn.execute(
                    "INSERT OR REPLACE INTO db_metadata (key, value, updated_at) VALUES (?, ?, ?)",
                    ("schema_version", SCHEMA_VERSION, _now()),
                )
            self._conn = conn

    async def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("[store] SQLite config store closed")

    async def _run(self, operation: str, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run fn against the connection in a worker thread."""
        if self._conn is None:
            raise StoreUnavailable(operation)

        def locked() -> T:
            with self._lock:
                if self._conn is None:
                    raise sqlite3.OperationalError("connection closed")
                return fn(self._conn)

        try:
            return await asyncio.to_thread(locked)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error(f"[store] {operation} failed: {e}")
            raise StoreUnavailable(operation, e) from e

    # ==================== Channel Mappings ====================

    async def get_channel_mapping(self, guild_id: str, channel_id: str) -> ChannelMapping | None:
        def query(conn: sqlite3.Connection) -> ChannelMapping | None:
            row = conn.execute(
                "SELECT * FROM channel_mappings WHERE guild_id = ? AND channel_id = ?",
                (guild_id, channel_id),
            ).fetchone()
            return _mapping_from_row(row) if row else None

        return await self._run("get_channel_mapping", query)

    async def upsert_channel_mapping(
        self, guild_id: str, channel_id: str, board_id: str, list_id: str
    ) -> ChannelMapping:
        def upsert(conn: sqlite3.Connection) -> ChannelMapping:
            now = _now()
            with conn:
                conn.execute(
                    """
                    INSERT INTO channel_mappings
                        (guild_id, channel_id, board_id, list_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(guild_id, channel_id) DO UPDATE SET
                        board_id = excluded.board_id,
                        list_id = excluded.list_id,
                        updated_at = excluded.updated_at
                    """,
                    (guild_id, channel_id, board_id, list_id, now, now),
                )
            row = conn.execute(
                "SELECT * FROM channel_mappings WHERE guild_id = ? AND channel_id = ?",
                (guild_id, channel_id),
            ).fetchone()
            return _mapping_from_row(row)

        return await self._run("upsert_channel_mapping", upsert)

    async def delete_channel_mapping(self, guild_id: str, channel_id: str) -> bool:
        def delete(conn: sqlite3.Connection) -> bool:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM channel_mappings WHERE guild_id = ? AND channel_id = ?",
                    (guild_id, channel_id),
                )
            return cursor.rowcount > 0

        return await self._run("delete_channel_mapping", delete)

    async def list_channel_mappings(self, guild_id: str) -> list[ChannelMapping]:
        def query(conn: sqlite3.Connection) -> list[ChannelMapping]:
            rows = conn.execute(
                "SELECT * FROM channel_mappings WHERE guild_id = ? ORDER BY updated_at DESC",
                (guild_id,),
            ).fetchall()
            return [_mapping_from_row(r) for r in rows]

        return await self._run("list_channel_mappings", query)

    async def find_channel_mappings_by_board(self, board_id: str) -> list[ChannelMapping]:
        def query(conn: sqlite3.Connection) -> list[ChannelMapping]:
            rows = conn.execute(
                "SELECT * FROM channel_mappings WHERE board_id = ? ORDER BY guild_id, channel_id",
                (board_id,),
            ).fetchall()
            return [_mapping_from_row(r) for r in rows]

        return await self._run("find_channel_mappings_by_board", query)

    # ==================== Guild Defaults ====================

    async def get_default_config(self, guild_id: str) -> DefaultConfig | None:
        def query(conn: sqlite3.Connection) -> DefaultConfig | None:
            row = conn.execute(
                "SELECT * FROM default_configs WHERE guild_id = ?", (guild_id,)
            ).fetchone()
            return _default_from_row(row) if row else None

        return await self._run("get_default_config", query)

    async def upsert_default_config(self, guild_id: str, board_id: str, list_id: str) -> DefaultConfig:
        def upsert(conn: sqlite3.Connection) -> DefaultConfig:
            now = _now()
            with conn:
                conn.execute(
                    """
                    INSERT INTO default_configs
                        (guild_id, default_board_id, default_list_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(guild_id) DO UPDATE SET
                        default_board_id = excluded.default_board_id,
                        default_list_id = excluded.default_list_id,
                        updated_at = excluded.updated_at
                    """,
                    (guild_id, board_id, list_id, now, now),
                )
            row = conn.execute(
                "SELECT * FROM default_configs WHERE guild_id = ?", (guild_id,)
            ).fetchone()
            return _default_from_row(row)

        return await self._run("upsert_default_config", upsert)

    async def delete_default_config(self, guild_id: str) -> bool:
        def delete(conn: sqlite3.Connection) -> bool:
            with conn:
                cursor = conn.execute("DELETE FROM default_configs WHERE guild_id = ?", (guild_id,))
            return cursor.rowcount > 0

        return await self._run("delete_default_config", delete)

    async def find_default_configs_by_board(self, board_id: str) -> list[DefaultConfig]:
        def query(conn: sqlite3.Connection) -> list[DefaultConfig]:
            rows = conn.execute(
                "SELECT * FROM default_configs WHERE default_board_id = ? ORDER BY guild_id",
                (board_id,),
            ).fetchall()
            return [_default_from_row(r) for r in rows]

        return await self._run("find_default_configs_by_board", query)

    async def delete_guild(self, guild_id: str) -> tuple[int, bool]:
        def delete(conn: sqlite3.Connection) -> tuple[int, bool]:
            with conn:
                mappings = conn.execute(
                    "DELETE FROM channel_mappings WHERE guild_id = ?", (guild_id,)
                ).rowcount
                default = conn.execute(
                    "DELETE FROM default_configs WHERE guild_id = ?", (guild_id,)
                ).rowcount
            return mappings, default > 0

        return await self._run("delete_guild", delete)

    async def list_configured_board_ids(self) -> list[str]:
        def query(conn: sqlite3.Connection) -> list[str]:
            rows = conn.execute(
                """
                SELECT board_id FROM channel_mappings
                UNION
                SELECT default_board_id AS board_id FROM default_configs
                ORDER BY board_id
                """
            ).fetchall()
            return [r["board_id"] for r in rows if r["board_id"]]

        return await self._run("list_configured_board_ids", query)

    # ==================== Webhook Registrations ====================

    async def get_webhook_registration(self, board_id: str) -> WebhookRegistration | None:
        def query(conn: sqlite3.Connection) -> WebhookRegistration | None:
            row = conn.execute(
                "SELECT * FROM webhook_registrations WHERE board_id = ?", (board_id,)
            ).fetchone()
            return _registration_from_row(row) if row else None

        return await self._run("get_webhook_registration", query)

    async def insert_webhook_registration(self, registration: WebhookRegistration) -> WebhookRegistration:
        def insert(conn: sqlite3.Connection) -> WebhookRegistration:
            now = _now()
            with conn:
                conn.execute(
                    """
                    INSERT INTO webhook_registrations
                        (board_id, webhook_id, callback_url, description, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        registration.board_id,
                        registration.webhook_id,
                        registration.callback_url,
                        registration.description,
                        now,
                        now,
                    ),
                )
            row = conn.execute(
                "SELECT * FROM webhook_registrations WHERE board_id = ?", (registration.board_id,)
            ).fetchone()
            return _registration_from_row(row)

        try:
            return await self._run("insert_webhook_registration", insert)
        except sqlite3.IntegrityError as e:
            raise WebhookConflict(registration.board_id) from e

    async def delete_webhook_registration(self, board_id: str) -> bool:
        def delete(conn: sqlite3.Connection) -> bool:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM webhook_registrations WHERE board_id = ?", (board_id,)
                )
            return cursor.rowcount > 0

        return await self._run("delete_webhook_registration", delete)

    async def delete_webhook_registration_by_webhook_id(self, webhook_id: str) -> bool:
        def delete(conn: sqlite3.Connection) -> bool:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM webhook_registrations WHERE webhook_id = ?", (webhook_id,)
                )
            return cursor.rowcount > 0

        return await self._run("delete_webhook_registration_by_webhook_id", delete)

    async def list_webhook_registrations(self) -> list[WebhookRegistration]:
        def query(conn: sqlite3.Connection) -> list[WebhookRegistration]:
            rows = conn.execute(
                "SELECT * FROM webhook_registrations ORDER BY created_at DESC"
            ).fetchall()
            return [_registration_from_row(r) for r in rows]

        return await self._run("list_webhook_registrations", query)

    # ==================== Audit and Analytics ====================

    async def write_audit_events(self, events: list[AuditEvent]) -> int:
        if not events:
            return 0
        params = [
            (
                e.event_id,
                e.guild_id,
                e.user_id,
                e.user_tag,
                e.action,
                e.category,
                e.target_type,
                e.target_id,
                e.details,
                int(e.severity),
                1 if e.success else 0,
                e.timestamp.isoformat(),
            )
            for e in events
        ]

        def insert(conn: sqlite3.Connection) -> int:
            before = conn.total_changes
            with conn:
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO audit_log
                        (event_id, guild_id, user_id, user_tag, action, category,
                         target_type, target_id, details, severity, success, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
            return conn.total_changes - before

        return await self._run("write_audit_events", insert)

    async def write_metric_records(self, records: list[MetricRecord]) -> int:
        if not records:
            return 0
        params = [
            (
                r.event_id,
                r.guild_id,
                r.channel_id,
                r.user_id,
                r.command,
                r.command_args,
                r.execution_time_ms,
                1 if r.success else 0,
                r.error_message,
                r.board_id,
                r.timestamp.isoformat(),
            )
            for r in records
        ]

        def insert(conn: sqlite3.Connection) -> int:
            before = conn.total_changes
            with conn:
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO usage_analytics
                        (event_id, guild_id, channel_id, user_id, command, command_args,
                         execution_time, success, error_message, board_id, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
            return conn.total_changes - before

        return await self._run("write_metric_records", insert)

    async def list_audit_events(self, guild_id: str | None = None, limit: int = 50) -> list[AuditEvent]:
        def query(conn: sqlite3.Connection) -> list[AuditEvent]:
            sql = "SELECT * FROM audit_log"
            args: list[Any] = []
            if guild_id is not None:
                sql += " WHERE guild_id = ?"
                args.append(guild_id)
            sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
            args.append(limit)
            return [_audit_from_row(r) for r in conn.execute(sql, args).fetchall()]

        return await self._run("list_audit_events", query)

    async def list_metric_records(self, guild_id: str | None = None, limit: int = 100) -> list[MetricRecord]:
        def query(conn: sqlite3.Connection) -> list[MetricRecord]:
            sql = "SELECT * FROM usage_analytics"
            args: list[Any] = []
            if guild_id is not None:
                sql += " WHERE guild_id = ?"
                args.append(guild_id)
            sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
            args.append(limit)
            return [_metric_from_row(r) for r in conn.execute(sql, args).fetchall()]

        return await self._run("list_metric_records", query)
