from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests

from ..config import CONFIG, ServerConfig
from ..errors import ServerConnectionError, TransportError
from .dialects import ServerDialect, detect_dialect, parse_dialect
from .transport import HttpTransport

log = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    """앞뒤 공백 제거, 마지막 '/' 하나 제거 후 URL 검증"""
    if address is None:
        raise ServerConnectionError("Invalid URL: None")
    url = address.strip()
    if url.endswith("/"):
        url = url[:-1]
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ServerConnectionError(f"Invalid URL: {address}")
    return url


@dataclass(frozen=True)
class ServerConnection:
    """An endpoint the client has validated, with its resolved dialect.

    Runs receive their own ``ServerConnection`` explicitly; reconnecting the
    manager never redirects a run that is already in flight.
    """
    url: str
    transport: HttpTransport
    dialect: ServerDialect
    liveness_path: str = "/"

    def is_connected(self) -> bool:
        try:
            return self.transport.get(self.liveness_path).status_code == 200
        except TransportError:
            return False


class ConnectionManager:
    """Holds the current server endpoint for the UI."""

    def __init__(self, config: Optional[ServerConfig] = None,
                 session: Optional[requests.Session] = None):
        self.config = config or CONFIG.server
        self.session = session
        self.current: Optional[ServerConnection] = None

    @property
    def url(self) -> Optional[str]:
        return self.current.url if self.current else None

    def connect(self, address: str, dialect=None) -> ServerConnection:
        """Validate ``address`` with a liveness probe and make it current.

        ``dialect`` overrides ``ServerConfig.dialect``; both accept ``"auto"``.
        """
        url = normalize_address(address)
        transport = HttpTransport(url, session=self.session, timeout=self.config.request_timeout)

        try:
            probe = transport.get(self.config.liveness_path)
        except TransportError as e:
            raise ServerConnectionError(f"Could not connect to server on {url}") from e
        if probe.status_code != 200:
            raise ServerConnectionError(
                f"Could not connect to server on {url} (HTTP {probe.status_code})")

        resolved = parse_dialect(dialect if dialect is not None else self.config.dialect)
        if resolved is None:
            resolved = detect_dialect(transport)

        connection = ServerConnection(url, transport, resolved, self.config.liveness_path)
        self.current = connection
        log.info("Successfully connected to server on %s (%s dialect)", url, resolved.value)
        return connection

    def is_connected(self) -> bool:
        if self.current is None:
            return False
        return self.current.is_connected()

    def disconnect(self) -> None:
        if self.current is not None:
            self.current.transport.close()
            self.current = None
