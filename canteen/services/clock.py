"""Logical clock reconciling wall-clock time with an external time source.

``ClockService.now()`` is the single source of truth for deadline math. It is
pure arithmetic on a cached offset and never performs I/O; only ``sync``
talks to the network, and a failed sync keeps the last known offset.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time as monotonic_time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from canteen.core.config import settings
from canteen.errors import TimeSourceError
from canteen.services.settings_service import load_clock_checkpoint, save_clock_checkpoint

logger = logging.getLogger(__name__)

WallClock = Callable[[], datetime]


def system_utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> tzinfo:
    """Map an IANA identifier to a tzinfo, falling back to the configured default."""
    for candidate in (name, settings.app_timezone):
        if not candidate:
            continue
        if candidate.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("[CLOCK] Unknown timezone %r, trying fallback", candidate)
    return timezone.utc


@dataclass(frozen=True)
class SyncResult:
    offset_ms: float
    success: bool
    source: str | None = None
    error: str | None = None


class TimeSource(Protocol):
    """Anything able to measure the local clock drift in milliseconds."""

    name: str

    async def query(self) -> float: ...


_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def _parse_unixtime(data: dict[str, Any]) -> float:
    return float(data["unixtime"]) * 1000.0


def _parse_naive_utc_datetime(data: dict[str, Any]) -> float:
    raw = _FRACTION_RE.sub(r"\1", str(data["dateTime"]))
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000.0


def _default_parser(url: str) -> Callable[[dict[str, Any]], float]:
    if "timeapi.io" in url:
        return _parse_naive_utc_datetime
    return _parse_unixtime


class HttpTimeSource:
    """HTTP time API returning the current UTC time as JSON.

    The measured offset is compensated by half the request round trip.
    """

    def __init__(
        self,
        url: str,
        *,
        parser: Callable[[dict[str, Any]], float] | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        wall_clock: WallClock = system_utc_now,
    ) -> None:
        self.url = url
        self.name = url
        self.parser = parser or _default_parser(url)
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.time_api_timeout_seconds
        self._transport = transport
        self._wall_clock = wall_clock

    async def query(self) -> float:
        started = monotonic_time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self._transport,
            ) as client:
                response = await client.get(self.url)
                response.raise_for_status()
                payload = response.json()
            server_ms = self.parser(payload)
        except httpx.HTTPError as exc:
            raise TimeSourceError(f"{self.url}: {exc}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            raise TimeSourceError(f"{self.url}: unparseable response ({exc})") from exc

        latency_ms = (monotonic_time.monotonic() - started) * 1000.0 / 2
        local_ms = self._wall_clock().timestamp() * 1000.0
        return server_ms - local_ms + latency_ms


class ChainedTimeSource:
    """Try each source in order and return the first successful measurement."""

    def __init__(self, sources: Sequence[TimeSource]) -> None:
        self.sources = list(sources)
        self.name = "chain(" + ", ".join(source.name for source in self.sources) + ")"

    async def query(self) -> float:
        errors: list[str] = []
        for source in self.sources:
            try:
                offset = await source.query()
            except TimeSourceError as exc:
                logger.info("[CLOCK] Time source %s failed: %s", source.name, exc)
                errors.append(str(exc))
                continue
            logger.info("[CLOCK] Time source %s answered, offset %.0fms", source.name, offset)
            return offset
        raise TimeSourceError("all time sources failed: " + "; ".join(errors) if errors else "no time sources configured")


def build_default_time_source() -> ChainedTimeSource:
    return ChainedTimeSource([HttpTimeSource(url) for url in settings.time_api_urls])


class ClockService:
    """Process-wide logical clock; single writer (``sync``), many readers."""

    def __init__(
        self,
        timezone_name: str | None = None,
        *,
        offset_ms: float = 0.0,
        last_sync_at: datetime | None = None,
        wall_clock: WallClock = system_utc_now,
    ) -> None:
        self._timezone_name = timezone_name or settings.app_timezone
        self._tz = resolve_timezone(self._timezone_name)
        self._offset_ms = float(offset_ms)
        self._last_sync_at = last_sync_at
        self._wall_clock = wall_clock
        self._sync_lock = asyncio.Lock()

    @property
    def offset_ms(self) -> float:
        return self._offset_ms

    @property
    def timezone_name(self) -> str:
        return self._timezone_name

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    def now_utc(self) -> datetime:
        """Adjusted UTC instant, used for persisted timestamps."""
        return self._wall_clock() + timedelta(milliseconds=self._offset_ms)

    def now(self) -> datetime:
        """Adjusted local wall-clock time used for every business comparison."""
        return self.to_local(self.now_utc())

    def today(self) -> date:
        return self.now().date()

    def to_local(self, instant: datetime) -> datetime:
        """Project an aware instant (naive values are taken as UTC) to local wall clock."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self._tz).replace(tzinfo=None)

    def to_utc(self, local: datetime) -> datetime:
        """Inverse of ``to_local`` for naive local wall-clock values."""
        return local.replace(tzinfo=self._tz).astimezone(timezone.utc)

    def set_timezone(self, name: str) -> None:
        self._timezone_name = name
        self._tz = resolve_timezone(name)
        logger.info("[CLOCK] Timezone updated to %s", name)

    def restore(self, offset_ms: float, last_sync_at: datetime | None) -> None:
        """Load a checkpointed offset after a restart."""
        self._offset_ms = float(offset_ms)
        self._last_sync_at = last_sync_at

    async def sync(self, source: TimeSource) -> SyncResult:
        """Measure and store a new offset; on failure keep the previous one."""
        async with self._sync_lock:
            try:
                offset = await source.query()
            except (TimeSourceError, OSError) as exc:
                logger.warning("[CLOCK] Sync failed, keeping offset %.0fms: %s", self._offset_ms, exc)
                return SyncResult(offset_ms=self._offset_ms, success=False, source=source.name, error=str(exc))
            except Exception as exc:
                logger.exception(
                    "[CLOCK] Time source %s raised unexpectedly, keeping offset %.0fms", source.name, self._offset_ms
                )
                return SyncResult(offset_ms=self._offset_ms, success=False, source=source.name, error=repr(exc))

            self._offset_ms = offset
            self._last_sync_at = self.now_utc()
            logger.info("[CLOCK] Sync complete via %s, offset %.0fms", source.name, offset)
            return SyncResult(offset_ms=offset, success=True, source=source.name)


class ClockSyncWorker:
    """Periodically resynchronizes the clock in the background.

    The offset is checkpointed to the ``app_settings`` table so a restart
    resumes from the last known good value.
    """

    def __init__(
        self,
        clock: ClockService,
        source: TimeSource,
        session_factory: sessionmaker | None = None,
        interval_seconds: float | None = None,
    ) -> None:
        self.clock = clock
        self.source = source
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.clock_sync_interval_seconds
        self.last_result: SyncResult | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Restore the checkpoint and start the background loop."""
        if self.session_factory is not None:
            await asyncio.to_thread(self._restore_checkpoint)

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def sync_now(self) -> SyncResult:
        result = await self.clock.sync(self.source)
        self.last_result = result
        if result.success and self.session_factory is not None:
            try:
                await asyncio.to_thread(self._write_checkpoint)
            except SQLAlchemyError:
                logger.exception("[CLOCK] Could not checkpoint offset %.0fms, keeping it in memory", result.offset_ms)
        return result

    async def _run(self) -> None:
        interval = max(1.0, float(self.interval_seconds))
        while not self._stopping.is_set():
            try:
                await self.sync_now()
            except Exception:
                logger.exception("[CLOCK] Sync tick failed, retrying in %.0fs", interval)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def _restore_checkpoint(self) -> None:
        with self.session_factory() as db:
            checkpoint = load_clock_checkpoint(db)
        if checkpoint is None:
            return
        if checkpoint.timezone_name:
            self.clock.set_timezone(checkpoint.timezone_name)
        self.clock.restore(checkpoint.offset_ms, checkpoint.last_sync_at)
        logger.info(
            "[CLOCK] Restored checkpoint offset %.0fms (last sync %s)", checkpoint.offset_ms, checkpoint.last_sync_at
        )

    def _write_checkpoint(self) -> None:
        with self.session_factory() as db:
            save_clock_checkpoint(db, offset_ms=self.clock.offset_ms, last_sync_at=self.clock.last_sync_at)
