import pytest
import requests

from conftest import requests_response
from wsi_algos.client.connection import ConnectionManager, normalize_address
from wsi_algos.client.dialects import ServerDialect
from wsi_algos.config import ServerConfig
from wsi_algos.errors import ServerConnectionError


@pytest.mark.parametrize("address, expected", [
    ("http://localhost:8000", "http://localhost:8000"),
    ("  http://localhost:8000/ ", "http://localhost:8000"),
    ("https://algos.example.org/api/", "https://algos.example.org/api"),
])
def test_normalize_address(address, expected):
    assert normalize_address(address) == expected


@pytest.mark.parametrize("address", ["", "   ", "localhost:8000", "ftp://host", "http://", None])
def test_normalize_address_rejects_invalid(address):
    with pytest.raises(ServerConnectionError):
        normalize_address(address)


def _routing_session(routes):
    """MagicMock session answering ``(method, url)`` from ``routes`` (404 otherwise)."""
    from unittest.mock import MagicMock

    session = MagicMock()

    def request(method, url, **kwargs):
        answer = routes.get((method, url))
        if isinstance(answer, Exception):
            raise answer
        return answer or requests_response(404, {"detail": "Not Found"})

    session.request.side_effect = request
    return session


def test_connect_with_explicit_dialect():
    session = _routing_session({("GET", "http://host/"): requests_response(200, {})})
    manager = ConnectionManager(ServerConfig(dialect="simple"), session=session)

    connection = manager.connect("http://host/")
    assert connection.url == "http://host"
    assert connection.dialect == ServerDialect.SIMPLE
    assert manager.current is connection
    assert manager.url == "http://host"


def test_connect_detects_stateful_dialect():
    session = _routing_session({
        ("GET", "http://host/"): requests_response(200, {}),
        ("GET", "http://host/algos_names/"): requests_response(200, {"algos_names": ["a"]}),
    })
    connection = ConnectionManager(ServerConfig(), session=session).connect("http://host")
    assert connection.dialect == ServerDialect.STATEFUL


def test_connect_detects_serverkit_dialect():
    session = _routing_session({
        ("GET", "http://host/"): requests_response(200, {}),
        ("GET", "http://host/services"): requests_response(200, {"services": ["a"]}),
    })
    connection = ConnectionManager(ServerConfig(), session=session).connect("http://host")
    assert connection.dialect == ServerDialect.SERVERKIT


def test_dialect_argument_overrides_config():
    session = _routing_session({("GET", "http://host/"): requests_response(200, {})})
    manager = ConnectionManager(ServerConfig(dialect="stateful"), session=session)
    assert manager.connect("http://host", dialect="c").dialect == ServerDialect.SERVERKIT


def test_failed_probe_keeps_previous_connection():
    session = _routing_session({
        ("GET", "http://good/"): requests_response(200, {}),
        ("GET", "http://bad/"): requests_response(503, {}),
        ("GET", "http://down/"): requests.exceptions.ConnectionError("refused"),
    })
    manager = ConnectionManager(ServerConfig(dialect="simple"), session=session)
    first = manager.connect("http://good")

    with pytest.raises(ServerConnectionError):
        manager.connect("http://bad")
    with pytest.raises(ServerConnectionError):
        manager.connect("http://down")
    assert manager.current is first


def test_undetectable_dialect_raises():
    session = _routing_session({("GET", "http://host/"): requests_response(200, {})})
    with pytest.raises(ServerConnectionError):
        ConnectionManager(ServerConfig(), session=session).connect("http://host")


def test_is_connected_never_raises():
    routes = {("GET", "http://host/"): requests_response(200, {})}
    session = _routing_session(routes)
    manager = ConnectionManager(ServerConfig(dialect="simple"), session=session)
    assert manager.is_connected() is False

    manager.connect("http://host")
    assert manager.is_connected() is True

    routes[("GET", "http://host/")] = requests.exceptions.Timeout("slow")
    assert manager.is_connected() is False

    routes[("GET", "http://host/")] = requests_response(500, {})
    assert manager.is_connected() is False


def test_disconnect_closes_transport():
    session = _routing_session({("GET", "http://host/"): requests_response(200, {})})
    manager = ConnectionManager(ServerConfig(dialect="simple"), session=session)
    manager.connect("http://host")
    manager.disconnect()
    assert manager.current is None
    session.close.assert_called_once()
