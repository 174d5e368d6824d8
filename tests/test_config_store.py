import asyncio
import json
import os

import pytest

from flexboard_agent.services.config_store import LocalConfigStore


def test_write_then_read(tmp_path) -> None:
    store = LocalConfigStore(tmp_path / "config.json")
    config = {"kpi1": {"query": "SELECT 1", "type": "kpi"}}

    asyncio.run(store.save(config))

    assert json.loads((tmp_path / "config.json").read_text(encoding="utf-8")) == config
    assert asyncio.run(store.load()) == config
    assert [path.name for path in tmp_path.iterdir()] == ["config.json"]


def test_missing_file_reads_none(tmp_path) -> None:
    store = LocalConfigStore(tmp_path / "absent.json")

    assert store.exists() is False
    assert store.read() is None


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", ""])
def test_invalid_document_reads_none(tmp_path, content: str) -> None:
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")

    assert LocalConfigStore(path).read() is None


def test_failed_replace_keeps_previous_document(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    store = LocalConfigStore(path)
    store.write({"w1": {"query": "SELECT 1"}})
    before = path.read_bytes()

    def _boom(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _boom)
    with pytest.raises(OSError):
        store.write({"w2": {"query": "SELECT 2"}})

    assert path.read_bytes() == before
    assert [item.name for item in tmp_path.iterdir()] == ["config.json"]


def test_write_creates_parent_directory(tmp_path) -> None:
    store = LocalConfigStore(tmp_path / "state" / "agent" / "config.json")

    store.write({})

    assert store.read() == {}
