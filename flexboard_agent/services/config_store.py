from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger("uvicorn.error")


class LocalConfigStore:
    """On-disk copy of the last applied widget configuration.

    Writes go to a temporary file in the same directory which is then renamed
    over the target, so a reader only ever sees a complete JSON document.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def read(self) -> dict[str, Any] | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("agent.config_store.missing | %s", {"path": str(self._path)})
            return None
        except OSError as exc:
            logger.warning("agent.config_store.read_failed | %s", {"path": str(self._path), "error": str(exc)})
            return None

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("agent.config_store.invalid_json | %s", {"path": str(self._path), "error": str(exc)})
            return None
        if not isinstance(payload, dict):
            logger.warning("agent.config_store.invalid_payload | %s", {"path": str(self._path)})
            return None
        return payload

    def write(self, config: dict[str, Any]) -> None:
        document = json.dumps(config, indent=2, ensure_ascii=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(document)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("agent.config_store.written | %s", {"path": str(self._path), "widgets": len(config)})

    async def load(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(self.read)

    async def save(self, config: dict[str, Any]) -> None:
        await asyncio.to_thread(self.write, config)
