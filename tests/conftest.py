import pytest

from flexboard_agent.schemas import BackendKind, QueryResult
from flexboard_agent.settings import Settings


class FakeConnector:
    """In-memory connector recording every query it receives."""

    def __init__(self, kind: BackendKind = BackendKind.SQL, result: QueryResult | None = None, healthy: bool = True) -> None:
        self.kind = kind
        self.calls: list[tuple[object, dict | None]] = []
        self._result = result or QueryResult(
            success=True,
            data=[[1]],
            columns=["value"],
            row_count=1,
            execution_time=2,
        )
        self._healthy = healthy

    async def test_connection(self) -> bool:
        return self._healthy

    async def execute_query(self, query, params=None) -> QueryResult:
        self.calls.append((query, params))
        return self._result

    def describe(self) -> dict[str, object]:
        return {"fake": True}


@pytest.fixture
def agent_settings(tmp_path) -> Settings:
    return Settings(
        environment="test",
        control_plane_url="http://control-plane.test",
        flexboard_api_key="fxb_test_key",
        config_file_path=str(tmp_path / "config.json"),
        sync_enabled=False,
        enable_caching=True,
        cache_ttl=60,
    )
