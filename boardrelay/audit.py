"""
Audit and analytics buffering for BoardRelay.

Audit events and command metrics are accumulated in memory and written to
the store in batches. Each buffer is owned by a single actor task; callers
only ever post messages to its inbox, so appends never interleave with a
flush half way through.

Flush triggers:
    - capacity reached (processed by the actor on the append that fills it)
    - interval elapsed since the first record of the current batch
    - explicit flush()
    - close()

A batch whose write fails is put back at the front of the buffer and
retried on the next flush. Until the interval has passed after a failure,
a full buffer does not trigger another write. While the store stays down
the buffer is capped at ``max_pending`` records and the oldest droppable
records are discarded first.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Generic, TypeVar

from boardrelay.config.schemas import AuditEvent, MetricRecord, Severity
from boardrelay.store.base import ConfigStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUDIT_CAPACITY = 50
AUDIT_INTERVAL = 15.0
METRICS_CAPACITY = 100
METRICS_INTERVAL = 30.0

SYSTEM_ID = "SYSTEM"


# =============================================================================
# Batch writer actor
# =============================================================================


class BufferState(str, Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


class _Append:
    __slots__ = ("record",)

    def __init__(self, record: Any):
        self.record = record


class _Flush:
    __slots__ = ("done",)

    def __init__(self, done: asyncio.Future[int]):
        self.done = done


class _Stop:
    __slots__ = ("done",)

    def __init__(self, done: asyncio.Future[int]):
        self.done = done


class BufferedBatchWriter(Generic[T]):
    """
    Single-task actor that batches records into a bulk writer.

    Usage:
        writer = BufferedBatchWriter("audit", store.write_audit_events, capacity=50, interval=15)
        await writer.start()
        writer.append(event)
        await writer.flush()
        await writer.close()

    Args:
        max_pending: Most records held while writes keep failing
            (default ``capacity * 10``)
        keep: Records for which this returns True are dropped only after
            every other record has gone

    Attributes:
        flush_count: Number of batches successfully written
        records_written: Records reported written by the bulk writer
        dropped: Records discarded because the buffer was full
    """

    def __init__(
        self,
        name: str,
        write_batch: Callable[[list[T]], Awaitable[int]],
        capacity: int,
        interval: float,
        max_pending: int | None = None,
        keep: Callable[[T], bool] | None = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if max_pending is None:
            max_pending = capacity * 10
        if max_pending < capacity:
            raise ValueError("max_pending must be at least capacity")
        self.name = name
        self.capacity = capacity
        self.interval = interval
        self.max_pending = max_pending
        self._write_batch = write_batch
        self._keep = keep
        self._inbox: asyncio.Queue[_Append | _Flush | _Stop] = asyncio.Queue()
        self._buffer: list[T] = []
        self._queued = 0
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self._retry_at: float | None = None
        self._outage_drops = 0
        self.state = BufferState.EMPTY
        self.flush_count = 0
        self.records_written = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        """Records accepted but not yet written."""
        return len(self._buffer) + self._queued

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._closed:
            raise RuntimeError(f"{self.name} writer is closed")
        if not self.running:
            self._task = asyncio.create_task(self._run(), name=f"{self.name}-batch-writer")

    def append(self, record: T) -> None:
        if self._closed:
            raise RuntimeError(f"{self.name} writer is closed")
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"{self.name}-batch-writer"
            )
        self._queued += 1
        self._inbox.put_nowait(_Append(record))

    async def flush(self) -> int:
        """Write everything appended so far. Returns the number of records written."""
        if not self.running:
            await self.start()
        done: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(_Flush(done))
        return await done

    async def close(self) -> int:
        """Flush remaining records and stop the actor."""
        if self._closed:
            return 0
        if not self.running:
            if not self._buffer and not self._queued:
                self._closed = True
                return 0
            await self.start()
        self._closed = True
        done: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(_Stop(done))
        written = await done
        if self._task is not None:
            await self._task
        return written

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline: float | None = None

        while True:
            timeout = None if deadline is None else max(0.0, deadline - loop.time())
            try:
                message = await asyncio.wait_for(self._inbox.get(), timeout)
            except asyncio.TimeoutError:
                deadline = None
                await self._flush_logged("interval")
                if self._buffer:
                    deadline = loop.time() + self.interval
                continue

            if isinstance(message, _Append):
                self._queued -= 1
                if not self._buffer:
                    deadline = loop.time() + self.interval
                self._buffer.append(message.record)
                self.state = BufferState.ACCUMULATING
                if len(self._buffer) > self.max_pending:
                    self._trim()
                backing_off = self._retry_at is not None and loop.time() < self._retry_at
                if len(self._buffer) >= self.capacity and not backing_off:
                    await self._flush_logged("capacity")
                    deadline = loop.time() + self.interval if self._buffer else None

            elif isinstance(message, _Flush):
                try:
                    message.done.set_result(await self._flush())
                except Exception as e:
                    message.done.set_exception(e)
                deadline = loop.time() + self.interval if self._buffer else None

            else:
                written = await self._flush_logged("close")
                if self._buffer:
                    logger.error(
                        f"[{self.name}] Dropping {len(self._buffer)} unwritten records on close"
                    )
                    self._buffer.clear()
                    self.state = BufferState.EMPTY
                message.done.set_result(written)
                return

    async def _flush_logged(self, trigger: str) -> int:
        try:
            return await self._flush()
        except Exception as e:
            logger.error(f"[{self.name}] {trigger} flush failed, {len(self._buffer)} records kept: {e}")
            return 0

    async def _flush(self) -> int:
        if not self._buffer:
            self.state = BufferState.EMPTY
            return 0

        batch, self._buffer = self._buffer, []
        self.state = BufferState.FLUSHING
        try:
            written = await self._write_batch(batch)
        except Exception:
            self._buffer[:0] = batch
            self._retry_at = asyncio.get_running_loop().time() + self.interval
            self.state = BufferState.ACCUMULATING
            if len(self._buffer) > self.max_pending:
                self._trim()
            raise

        self._retry_at = None
        if self._outage_drops:
            logger.warning(f"[{self.name}] Writes recovered, {self._outage_drops} records were dropped")
            self._outage_drops = 0
        self.flush_count += 1
        self.records_written += written
        self.state = BufferState.ACCUMULATING if self._buffer else BufferState.EMPTY
        logger.debug(f"[{self.name}] Flushed {len(batch)} records ({written} new)")
        return written

    def _trim(self) -> None:
        """Drop the oldest records until at most max_pending remain."""
        excess = len(self._buffer) - self.max_pending
        if excess <= 0:
            return

        if self._keep is None:
            del self._buffer[:excess]
        else:
            remaining = excess
            kept: list[T] = []
            for record in self._buffer:
                if remaining and not self._keep(record):
                    remaining -= 1
                else:
                    kept.append(record)
            # Only kept records left to drop
            if remaining:
                del kept[:remaining]
            self._buffer = kept

        if not self._outage_drops:
            logger.error(
                f"[{self.name}] Buffer full at {self.max_pending} records, "
                f"dropping oldest until writes recover"
            )
        self._outage_drops += excess
        self.dropped += excess


# =============================================================================
# Audit logger
# =============================================================================

_SECRET_KEY_RE = re.compile(r"token|secret|password|api_key|authorization", re.IGNORECASE)

ACTION_SEVERITY: dict[str, Severity] = {
    "reset": Severity.HIGH,
    "webhook_register": Severity.MEDIUM,
    "webhook_unregister": Severity.MEDIUM,
}

CONFIG_CHANGE_SEVERITY: dict[str, Severity] = {
    "channel_mapping_add": Severity.LOW,
    "channel_mapping_remove": Severity.MEDIUM,
    "default_config_set": Severity.MEDIUM,
    "default_config_remove": Severity.MEDIUM,
    "webhook_register": Severity.MEDIUM,
    "webhook_unregister": Severity.MEDIUM,
}


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if _SECRET_KEY_RE.search(str(k)) else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return [_redact(v) for v in value]
    if isinstance(value, str):
        return value[:500]
    return value


def encode_details(details: dict[str, Any] | str | None) -> str | None:
    """JSON-encode audit details with secret-looking keys redacted."""
    if details is None:
        return None
    if isinstance(details, str):
        return details[:500]
    return json.dumps(_redact(details), default=str)


class AuditLogger:
    """
    Buffered audit trail.

    CRITICAL events are also written straight to the store before append()
    returns. The buffered copy carries the same event_id, so the store keeps
    a single row either way.
    """

    def __init__(
        self,
        store: ConfigStore,
        capacity: int = AUDIT_CAPACITY,
        interval: float = AUDIT_INTERVAL,
    ):
        self._store = store
        self._writer: BufferedBatchWriter[AuditEvent] = BufferedBatchWriter(
            "audit",
            store.write_audit_events,
            capacity,
            interval,
            keep=lambda event: event.severity >= Severity.CRITICAL,
        )

    @property
    def writer(self) -> BufferedBatchWriter[AuditEvent]:
        return self._writer

    async def start(self) -> None:
        await self._writer.start()

    async def flush(self) -> int:
        return await self._writer.flush()

    async def close(self) -> None:
        await self._writer.close()

    async def append(self, event: AuditEvent) -> AuditEvent:
        if event.severity >= Severity.CRITICAL:
            logger.warning(
                f"[audit] CRITICAL event {event.action} by {event.user_tag or event.user_id} "
                f"in guild {event.guild_id}"
            )
            try:
                await self._store.write_audit_events([event])
            except Exception as e:
                logger.error(f"[audit] Immediate write of critical event {event.event_id} failed: {e}")

        self._writer.append(event)
        return event

    async def recent(self, guild_id: str | None = None, limit: int = 50) -> list[AuditEvent]:
        return await self._store.list_audit_events(guild_id, limit)

    # ==================== Helpers ====================

    async def log_admin_action(
        self,
        guild_id: str,
        user_id: str,
        user_tag: str | None,
        action: str,
        target_type: str | None = None,
        target_id: str | None = None,
        details: dict[str, Any] | str | None = None,
        success: bool = True,
    ) -> AuditEvent:
        return await self.append(
            AuditEvent(
                guild_id=guild_id,
                user_id=user_id,
                user_tag=user_tag,
                action=f"admin_{action}",
                category="administration",
                target_type=target_type,
                target_id=target_id,
                details=encode_details(details),
                severity=ACTION_SEVERITY.get(action, Severity.LOW),
                success=success,
            )
        )

    async def log_config_change(
        self,
        guild_id: str,
        user_id: str,
        user_tag: str | None,
        change_type: str,
        old_value: Any,
        new_value: Any,
        channel_id: str | None = None,
        success: bool = True,
    ) -> AuditEvent:
        details = {
            "change_type": change_type,
            "old_value": old_value,
            "new_value": new_value,
            "channel_id": channel_id,
        }
        return await self.append(
            AuditEvent(
                guild_id=guild_id,
                user_id=user_id,
                user_tag=user_tag,
                action=f"config_{change_type}",
                category="configuration",
                target_type="configuration",
                target_id=channel_id,
                details=encode_details(details),
                severity=CONFIG_CHANGE_SEVERITY.get(change_type, Severity.LOW),
                success=success,
            )
        )

    async def log_webhook_event(
        self,
        guild_id: str,
        user_id: str,
        user_tag: str | None,
        webhook_action: str,
        board_id: str,
        webhook_id: str | None,
        success: bool = True,
        error: Exception | str | None = None,
    ) -> AuditEvent:
        details = {
            "webhook_action": webhook_action,
            "board_id": board_id,
            "webhook_id": webhook_id,
            "error": str(error) if error else None,
        }
        return await self.append(
            AuditEvent(
                guild_id=guild_id,
                user_id=user_id,
                user_tag=user_tag,
                action=f"webhook_{webhook_action}",
                category="webhook",
                target_type="webhook",
                target_id=webhook_id or board_id,
                details=encode_details(details),
                severity=Severity.LOW if success else Severity.MEDIUM,
                success=success,
            )
        )

    async def log_security_event(
        self,
        guild_id: str,
        user_id: str,
        user_tag: str | None,
        event_type: str,
        details: dict[str, Any] | str | None = None,
        severity: str = "MEDIUM",
    ) -> AuditEvent:
        return await self.append(
            AuditEvent(
                guild_id=guild_id,
                user_id=user_id,
                user_tag=user_tag,
                action=f"security_{event_type}",
                category="security",
                target_type="security",
                details=encode_details(details),
                severity=Severity.from_string(severity, Severity.MEDIUM),
            )
        )

    async def log_system_event(
        self,
        event_type: str,
        details: dict[str, Any] | str | None = None,
        severity: str = "LOW",
    ) -> AuditEvent:
        return await self.append(
            AuditEvent(
                guild_id=SYSTEM_ID,
                user_id=SYSTEM_ID,
                user_tag="System",
                action=f"system_{event_type}",
                category="system",
                target_type="system",
                details=encode_details(details),
                severity=Severity.from_string(severity, Severity.LOW),
            )
        )


# =============================================================================
# Command metrics
# =============================================================================


def categorize_error(message: str) -> str:
    text = message.lower()
    if "permission" in text or "unauthorized" in text:
        return "permission_error"
    if "network" in text or "timeout" in text:
        return "network_error"
    if "trello" in text or "api" in text:
        return "api_error"
    if "database" in text or "sql" in text or "store" in text:
        return "database_error"
    if "validation" in text or "invalid" in text:
        return "validation_error"
    return "other_error"


class MetricsBuffer:
    """
    Buffered command analytics plus in-process performance counters.

    Counters cover the lifetime of the process; only the buffered records
    are persisted.
    """

    def __init__(
        self,
        store: ConfigStore,
        capacity: int = METRICS_CAPACITY,
        interval: float = METRICS_INTERVAL,
        window: int = 1000,
    ):
        self._store = store
        self._writer: BufferedBatchWriter[MetricRecord] = BufferedBatchWriter(
            "metrics", store.write_metric_records, capacity, interval
        )
        self._command_counts: Counter[str] = Counter()
        self._error_counts: Counter[str] = Counter()
        self._response_times: deque[float] = deque(maxlen=window)

    @property
    def writer(self) -> BufferedBatchWriter[MetricRecord]:
        return self._writer

    async def start(self) -> None:
        await self._writer.start()

    async def flush(self) -> int:
        return await self._writer.flush()

    async def close(self) -> None:
        await self._writer.close()

    def record_command(
        self,
        guild_id: str,
        channel_id: str,
        user_id: str,
        command: str,
        args: list[str] | None = None,
        execution_time_ms: float = 0.0,
        success: bool = True,
        error_message: str | None = None,
        board_id: str | None = None,
    ) -> MetricRecord:
        record = MetricRecord(
            guild_id=guild_id,
            channel_id=channel_id,
            user_id=user_id,
            command=command,
            command_args=" ".join(args) if args else None,
            execution_time_ms=execution_time_ms,
            success=success,
            error_message=error_message,
            board_id=board_id,
        )
        self._writer.append(record)

        self._command_counts[command] += 1
        self._response_times.append(execution_time_ms)
        if not success and error_message:
            self._error_counts[categorize_error(error_message)] += 1
        return record

    def performance_summary(self) -> dict[str, Any]:
        times = self._response_times
        total_commands = sum(self._command_counts.values())
        total_errors = sum(self._error_counts.values())
        error_rate = total_errors / total_commands * 100 if total_commands else 0.0

        return {
            "average_response_time_ms": round(sum(times) / len(times)) if times else 0,
            "success_rate": round(100 - error_rate, 2),
            "error_rate": round(error_rate, 2),
            "total_commands": total_commands,
            "total_errors": total_errors,
            "buffer_size": self._writer.pending,
            "flush_count": self._writer.flush_count,
            "top_commands": [
                {"command": c, "count": n} for c, n in self._command_counts.most_common(5)
            ],
            "error_breakdown": dict(self._error_counts),
        }
