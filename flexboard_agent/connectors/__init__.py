from __future__ import annotations

from typing import Any

from flexboard_agent.connectors.base import Connector
from flexboard_agent.connectors.config import (
    ConnectionConfig,
    FirestoreConfig,
    MySqlConfig,
    PostgresConfig,
    RestApiConfig,
    SqlServerConfig,
)
from flexboard_agent.connectors.firestore import FirestoreConnector
from flexboard_agent.connectors.mysql import MySqlConnector
from flexboard_agent.connectors.postgres import PostgresConnector
from flexboard_agent.connectors.rest import RestApiConnector
from flexboard_agent.connectors.sqlserver import SqlServerConnector
from flexboard_agent.schemas import BackendKind

ConnectorSettings = SqlServerConfig | PostgresConfig | MySqlConfig | RestApiConfig | FirestoreConfig


def _expect(config: ConnectorSettings, expected: type) -> Any:
    if not isinstance(config, expected):
        raise TypeError(f"Expected {expected.__name__}, got {type(config).__name__}")
    return config


def build_connector(kind: BackendKind, config: ConnectorSettings) -> Connector:
    match kind:
        case BackendKind.SQL:
            return SqlServerConnector(_expect(config, SqlServerConfig))
        case BackendKind.POSTGRESQL:
            return PostgresConnector(_expect(config, PostgresConfig))
        case BackendKind.MYSQL:
            return MySqlConnector(_expect(config, MySqlConfig))
        case BackendKind.API:
            return RestApiConnector(_expect(config, RestApiConfig))
        case BackendKind.FIRESTORE:
            return FirestoreConnector(_expect(config, FirestoreConfig))
    raise ValueError(f"Unknown backend kind: {kind}")


def build_connectors(config: ConnectionConfig) -> dict[BackendKind, Connector]:
    connectors: dict[BackendKind, Connector] = {}
    for kind in BackendKind:
        backend_config = getattr(config, kind.value)
        if backend_config is not None:
            connectors[kind] = build_connector(kind, backend_config)
    return connectors


__all__ = [
    "ConnectionConfig",
    "Connector",
    "FirestoreConnector",
    "MySqlConnector",
    "PostgresConnector",
    "RestApiConnector",
    "SqlServerConnector",
    "build_connector",
    "build_connectors",
]
