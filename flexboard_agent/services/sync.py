from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from time import monotonic
from types import MappingProxyType
from typing import Any, Callable, Literal, Mapping

import httpx
from pydantic import ValidationError

from flexboard_agent.connectors.base import error_message
from flexboard_agent.schemas import ConfigSource, SyncMetadata, SyncRequest, SyncResponse, WidgetConfig
from flexboard_agent.services.config_store import LocalConfigStore
from flexboard_agent.settings import Settings

logger = logging.getLogger("uvicorn.error")

SYNC_PATH = "/api/agent/sync"

SyncStatusName = Literal["updated", "up_to_date", "failed"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class ActiveConfig:
    widgets: Mapping[str, WidgetConfig]
    version: int
    source: ConfigSource
    synced_at: datetime | None = None

    def get(self, widget_id: str) -> WidgetConfig | None:
        return self.widgets.get(widget_id)


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    status: SyncStatusName
    config_version: int
    timestamp: datetime
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != "failed"


def parse_widgets(config: Mapping[str, Any]) -> Mapping[str, WidgetConfig]:
    """Validate every widget entry; entries that do not validate are left out and logged."""
    widgets: dict[str, WidgetConfig] = {}
    for widget_id, entry in config.items():
        try:
            widgets[str(widget_id)] = WidgetConfig.model_validate(entry)
        except ValidationError as exc:
            logger.warning(
                "agent.config.invalid_widget | %s",
                {"widget_id": widget_id, "errors": exc.error_count()},
            )
    return MappingProxyType(widgets)


class ControlPlaneSync:
    """Pull-based configuration sync against the control plane.

    The active configuration is only ever replaced as a whole: readers keep
    whatever ``ActiveConfig`` reference they captured. Concurrent ``sync()``
    calls share one in-flight attempt.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        store: LocalConfigStore,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._transport = transport
        self._clock = clock
        self._active: ActiveConfig | None = None
        self._version = 0
        self._last_sync: datetime | None = None
        self._last_attempt: datetime | None = None
        self._last_error: str | None = None
        self._inflight: asyncio.Future[SyncOutcome] | None = None
        self._task: asyncio.Task[None] | None = None
        self._next_run_at: float | None = None

    @property
    def active(self) -> ActiveConfig | None:
        return self._active

    @property
    def version(self) -> int:
        return self._version

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    @property
    def last_attempt(self) -> datetime | None:
        return self._last_attempt

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def control_plane_url(self) -> str | None:
        return self._settings.control_plane_url

    def next_sync_in(self) -> int | None:
        if self._next_run_at is None:
            return None
        return max(0, int((self._next_run_at - monotonic()) * 1000))

    async def load_local(self) -> bool:
        if self._active is not None:
            return True
        config = await self._store.load()
        if config is None:
            return False
        # A sync may have completed while the file was being read.
        if self._active is not None:
            return True
        self._active = ActiveConfig(widgets=parse_widgets(config), version=self._version, source="local_file")
        logger.info(
            "agent.sync.local_fallback | %s",
            {"path": str(self._store.path), "widgets": len(self._active.widgets), "config_version": self._version},
        )
        return True

    async def sync(self) -> SyncOutcome:
        if self._inflight is not None:
            logger.info("agent.sync.joined | %s", {"config_version": self._version})
            return await asyncio.shield(self._inflight)

        future: asyncio.Future[SyncOutcome] = asyncio.get_running_loop().create_future()
        self._inflight = future
        try:
            try:
                outcome = await self._attempt()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as exc:
                message = error_message(exc)
                logger.exception("agent.sync.unexpected_error | %s", {"config_version": self._version, "error": message})
                self._last_error = message
                outcome = SyncOutcome(status="failed", config_version=self._version, timestamp=self._clock(), error=message)
            future.set_result(outcome)
            return outcome
        finally:
            self._inflight = None

    async def _attempt(self) -> SyncOutcome:
        started = self._clock()
        self._last_attempt = started
        logger.info(
            "agent.sync.start | %s",
            {"control_plane_url": self._settings.control_plane_url, "current_version": self._version},
        )
        try:
            response = await self._request()
        except Exception as exc:
            # Transport errors, httpx.InvalidURL for a malformed CONTROL_PLANE_URL, bad payloads.
            return await self._handle_failure(error_message(exc), started)

        if not response.has_updates or response.metadata is None:
            self._last_sync = started
            self._last_error = None
            logger.info(
                "agent.sync.up_to_date | %s",
                {"config_version": self._version, "latest_version": response.latest_version},
            )
            return SyncOutcome(status="up_to_date", config_version=self._version, timestamp=started)

        return await self._apply(response.metadata, started)

    async def _request(self) -> SyncResponse:
        payload = SyncRequest(current_version=self._version, agent_version=self._settings.agent_version)
        async with httpx.AsyncClient(
            base_url=self._settings.control_plane_url or "",
            timeout=self._settings.sync_timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(
                SYNC_PATH,
                json=payload.model_dump(),
                headers={"Authorization": f"Bearer {self._settings.flexboard_api_key}"},
            )
        response.raise_for_status()
        parsed = SyncResponse.model_validate(response.json())
        if not parsed.success:
            raise SyncError("Control plane reported an unsuccessful sync")
        return parsed

    async def _apply(self, metadata: SyncMetadata, started: datetime) -> SyncOutcome:
        # The version never goes down; an equal version is only taken while nothing is active.
        stale = metadata.version < self._version or (self._active is not None and metadata.version == self._version)
        if stale:
            self._last_sync = started
            self._last_error = None
            logger.info(
                "agent.sync.version_not_newer | %s",
                {"config_version": self._version, "offered_version": metadata.version},
            )
            if self._active is None:
                await self.load_local()
            return SyncOutcome(status="up_to_date", config_version=self._version, timestamp=started)

        previous_version = self._version
        self._active = ActiveConfig(
            widgets=parse_widgets(metadata.config),
            version=metadata.version,
            source="control_plane",
            synced_at=started,
        )
        self._version = metadata.version
        self._last_sync = started
        self._last_error = None
        logger.info(
            "agent.sync.applied | %s",
            {"from_version": previous_version, "to_version": metadata.version, "widgets": len(self._active.widgets)},
        )

        try:
            await self._store.save(metadata.config)
        except (OSError, TypeError, ValueError) as exc:
            logger.error(
                "agent.sync.persist_failed | %s",
                {"path": str(self._store.path), "config_version": metadata.version, "error": str(exc)},
            )
        return SyncOutcome(status="updated", config_version=self._version, timestamp=started)

    async def _handle_failure(self, message: str, started: datetime) -> SyncOutcome:
        self._last_error = message
        logger.error(
            "agent.sync.failed | %s",
            {"control_plane_url": self._settings.control_plane_url, "error": message, "config_version": self._version},
        )
        if self._active is None:
            await self.load_local()
        return SyncOutcome(status="failed", config_version=self._version, timestamp=started, error=message)

    async def run_periodic(self) -> None:
        interval = self._settings.sync_interval_seconds
        while True:
            self._next_run_at = monotonic() + interval
            await asyncio.sleep(interval)
            try:
                await self.sync()
            except Exception:
                logger.exception("agent.sync.loop_error | %s", {"config_version": self._version})

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run_periodic(), name="flexboard-agent-sync")
        logger.info("agent.sync.scheduled | %s", {"interval_ms": self._settings.sync_interval})

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._next_run_at = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
