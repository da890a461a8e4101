from typing import Any

import pytest
from pydantic import SecretStr

import stretch.connections.manager as manager_mod
from stretch.config.general import ConnectionSettings, GeneralConfig
from stretch.connections.client import ElasticsearchClient
from stretch.connections.manager import ConnectionManager
from stretch.errors import ConfigurationError, UnknownConnectionError


class RecordingElasticsearch:
    """Replaces AsyncElasticsearch so no connection is attempted."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs: dict[str, Any] = kwargs
        self.closed: bool = False

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def manager(monkeypatch: pytest.MonkeyPatch) -> ConnectionManager:
    monkeypatch.setattr(manager_mod, "AsyncElasticsearch", RecordingElasticsearch)
    config = GeneralConfig(
        connections={
            "default": ConnectionSettings(hosts=["http://es:9200"]),
            "analytics": ConnectionSettings(
                cloud_id="deployment:abc",
                username="elastic",
                password=SecretStr("changeme"),
                api_key=SecretStr("key"),
                ssl_verification=False,
                max_retries=0,
            ),
        }
    )
    return ConnectionManager(config)


def test_connection_kwargs(manager: ConnectionManager) -> None:
    default = manager.connection()
    analytics = manager.connection("analytics")

    assert default.kwargs == {  # pyright:ignore[reportAttributeAccessIssue]
        "hosts": ["http://es:9200"],
        "verify_certs": True,
        "request_timeout": 10,
        "max_retries": 3,
        "retry_on_timeout": True,
    }
    assert analytics.kwargs == {  # pyright:ignore[reportAttributeAccessIssue]
        "cloud_id": "deployment:abc",
        "basic_auth": ("elastic", "changeme"),
        "api_key": "key",
        "verify_certs": False,
        "request_timeout": 10,
        "max_retries": 0,
        "retry_on_timeout": False,
    }


def test_connections_are_reused(manager: ConnectionManager) -> None:
    assert manager.connection("analytics") is manager.connection("analytics")
    assert manager.connection_names() == ["default", "analytics"]


def test_resolve_wraps_the_connection(manager: ConnectionManager) -> None:
    client = manager.resolve("analytics")

    assert isinstance(client, ElasticsearchClient)
    assert client.name == "analytics"
    assert client.es_connection is manager.connection("analytics")
    assert manager.resolve().name == "default"  # pyright:ignore[reportAttributeAccessIssue]


def test_unknown_connection(manager: ConnectionManager) -> None:
    with pytest.raises(UnknownConnectionError, match=r"\[missing\] not configured"):
        manager.resolve("missing")
    with pytest.raises(ConfigurationError):
        manager.connection("missing")


@pytest.mark.asyncio
async def test_purge_and_disconnect(manager: ConnectionManager) -> None:
    default = manager.connection()
    analytics = manager.connection("analytics")

    await manager.purge("analytics")

    assert analytics.closed  # pyright:ignore[reportAttributeAccessIssue]
    assert manager.connection("analytics") is not analytics

    await manager.disconnect()

    assert default.closed  # pyright:ignore[reportAttributeAccessIssue]
    assert manager.connections == {}
