from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flexboard_agent.errors import ConfigUnavailableError, QueryExecutionError, WidgetNotFoundError
from flexboard_agent.schemas import QueryRequest, QueryResult, WidgetDataMetadata, WidgetDataResponse
from flexboard_agent.services.engine import QueryEngine
from flexboard_agent.services.sync import ActiveConfig, ControlPlaneSync
from flexboard_agent.settings import Settings

logger = logging.getLogger("uvicorn.error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


@dataclass(slots=True)
class _CacheEntry:
    result: QueryResult
    expires_at: datetime


class WidgetDataService:
    def __init__(self, *, engine: QueryEngine, sync: ControlPlaneSync, settings: Settings) -> None:
        self._engine = engine
        self._sync = sync
        self._settings = settings
        self._cache: OrderedDict[tuple[str, int, str], _CacheEntry] = OrderedDict()
        self._cache_lock = asyncio.Lock()

    async def _resolve_config(self) -> ActiveConfig:
        active = self._sync.active
        if active is None and await self._sync.load_local():
            active = self._sync.active
        if active is None:
            raise ConfigUnavailableError()
        return active

    async def fetch(self, widget_id: str) -> WidgetDataResponse:
        # One reference for the whole request; a concurrent sync swaps in a new object.
        active = await self._resolve_config()
        widget = active.get(widget_id)
        if widget is None:
            raise WidgetNotFoundError(widget_id)

        cache_key = (widget_id, active.version, active.source)
        result = await self._cache_get(cache_key)
        cache_hit = result is not None
        if result is None:
            request = QueryRequest(
                data_source_type=widget.data_source_type,
                query=widget.query,
                params=widget.params,
                widget_id=widget_id,
                tenant_id=widget.tenant_id,
            )
            result = await self._engine.execute_query(request)
            if not result.success:
                raise QueryExecutionError(result.error, backend=widget.data_source_type.value, widget_id=widget_id)
            await self._cache_set(cache_key, result)

        return WidgetDataResponse(
            data=result.data,
            columns=result.columns,
            row_count=result.row_count,
            execution_time=result.execution_time,
            metadata=WidgetDataMetadata(
                widget_id=widget_id,
                type=widget.type,
                config_source=active.source,
                last_sync=isoformat(active.synced_at or self._sync.last_sync),
                config_version=active.version,
                cache_hit=cache_hit,
            ),
        )

    async def _cache_get(self, key: tuple[str, int, str]) -> QueryResult | None:
        if not self._settings.enable_caching:
            return None
        now = _utcnow()
        async with self._cache_lock:
            entry = self._cache.get(key)
            if not entry:
                return None
            if entry.expires_at <= now:
                self._cache.pop(key, None)
                return None
            self._cache.move_to_end(key)
            return entry.result.model_copy(deep=True)

    async def _cache_set(self, key: tuple[str, int, str], result: QueryResult) -> None:
        if not self._settings.enable_caching:
            return
        async with self._cache_lock:
            self._cache[key] = _CacheEntry(
                result=result.model_copy(deep=True),
                expires_at=_utcnow() + timedelta(seconds=self._settings.cache_ttl),
            )
            self._cache.move_to_end(key)
            while len(self._cache) > self._settings.cache_max_entries:
                self._cache.popitem(last=False)
