import json
from unittest.mock import MagicMock

import pytest

from wsi_algos.client.connection import ServerConnection
from wsi_algos.client.dialects import ServerDialect
from wsi_algos.client.transport import HttpResponse

BASE_URL = "http://algos.test"


def json_response(status, body=None):
    payload = b"" if body is None else json.dumps(body).encode("utf-8")
    return HttpResponse(status, payload, {"Content-Type": "application/json"})


def requests_response(status=200, body=None, content=None):
    """MagicMock shaped like ``requests.Response``."""
    resp = MagicMock()
    resp.status_code = status
    if content is None:
        content = b"" if body is None else json.dumps(body).encode("utf-8")
    resp.content = content
    resp.headers = {"Content-Type": "application/json"}
    return resp


class FakeTransport:
    """In-memory transport answering ``(method, path)`` from a route table.

    A route value may be an ``HttpResponse``, an exception instance (raised),
    or a list of either (consumed in order). Unknown routes answer 404.
    """

    def __init__(self, routes=None, base_url=BASE_URL):
        self.base_url = base_url
        self.routes = dict(routes or {})
        self.calls = []
        self.closed = False

    def url_for(self, path):
        return f"{self.base_url}{path}"

    def get(self, path):
        return self._handle("GET", path, None)

    def post(self, path, body):
        return self._handle("POST", path, body)

    def delete(self, path):
        return self._handle("DELETE", path, None)

    def close(self):
        self.closed = True

    def paths(self, method=None):
        return [p for m, p, _ in self.calls if method is None or m == method]

    def _handle(self, method, path, body):
        self.calls.append((method, path, body))
        answer = self.routes.get((method, path))
        if isinstance(answer, list):
            answer = answer.pop(0) if answer else None
        if answer is None:
            return json_response(404, {"detail": "Not Found"})
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def make_connection():
    def _make(dialect, routes=None):
        transport = FakeTransport(routes)
        return ServerConnection(BASE_URL, transport, dialect)
    return _make


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.request.return_value = requests_response(200, {})
    return session


@pytest.fixture(params=list(ServerDialect))
def any_dialect(request):
    return request.param
