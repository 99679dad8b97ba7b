from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from ..errors import DecodeError, TransportError

JSON_CONTENT_TYPE = "application/json"
BYTES_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class HttpResponse:
    """서버 응답 (status code + raw body)"""
    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Invalid JSON response (HTTP {self.status_code}): {e}") from e

    def json_object(self) -> Dict[str, Any]:
        data = self.json()
        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")
        return data

    def detail(self) -> Optional[str]:
        """에러 응답의 ``detail`` 필드 (없으면 None)"""
        try:
            data = self.json()
        except DecodeError:
            return None
        if isinstance(data, dict) and data.get("detail") is not None:
            detail = data["detail"]
            return detail if isinstance(detail, str) else json.dumps(detail)
        return None

    def __repr__(self):
        return f"HttpResponse(status={self.status_code}, {len(self.body)} bytes)"


class HttpTransport:
    """Issues single GET/POST/DELETE requests against one server base URL.

    Non-2xx statuses are returned to the caller untouched; only network-level
    failures raise :class:`TransportError`.
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        self.base_url = base_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def get(self, path: str) -> HttpResponse:
        return self._send("GET", path, headers={"Content-Type": JSON_CONTENT_TYPE})

    def post(self, path: str, body: Any) -> HttpResponse:
        if isinstance(body, (bytes, bytearray)):
            return self._send("POST", path, data=bytes(body),
                              headers={"Content-Type": BYTES_CONTENT_TYPE})
        if not isinstance(body, str):
            body = json.dumps(body)
        return self._send("POST", path, data=body.encode("utf-8"),
                          headers={"Content-Type": JSON_CONTENT_TYPE})

    def delete(self, path: str) -> HttpResponse:
        return self._send("DELETE", path, headers={"Content-Type": JSON_CONTENT_TYPE})

    def close(self) -> None:
        self.session.close()

    def _send(self, method: str, path: str, **kwargs) -> HttpResponse:
        url = self.url_for(path)
        self.logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            self.logger.error(f"{method} {url} failed: {e}")
            raise TransportError(f"{method} {url} failed: {e}") from e
        return HttpResponse(
            status_code=response.status_code,
            body=response.content or b"",
            headers=dict(response.headers),
        )
