"""Route tables for the server API dialects the client can talk to.

Three dialects exist in the wild and their response keys differ, so the client
never guesses a single schema: the dialect is either configured explicitly or
detected once at connection time.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..errors import ServerConnectionError, TransportError
from .transport import HttpTransport

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DialectRoutes:
    algorithms: str
    algorithm_keys: Tuple[str, ...]
    parameters: str
    # 파라미터 맵을 감싸는 키 (None: 응답 자체가 파라미터 맵)
    schema_key: Optional[str]
    process: Optional[str] = None
    sample_images: Optional[str] = None
    documentation: Optional[str] = None
    info: Optional[str] = None

    def format(self, template: Optional[str], algo: str) -> Optional[str]:
        return template.format(algo=algo) if template else None


class ServerDialect(Enum):
    SIMPLE = "simple"
    STATEFUL = "stateful"
    SERVERKIT = "serverkit"

    @property
    def routes(self) -> DialectRoutes:
        return _ROUTES[self]

    @property
    def is_single_shot(self) -> bool:
        return self.routes.process is not None


_ROUTES = {
    ServerDialect.SIMPLE: DialectRoutes(
        algorithms="/services",
        algorithm_keys=("services",),
        parameters="/{algo}/parameters",
        schema_key="properties",
        process="/{algo}",
        documentation="/{algo}/info",
    ),
    ServerDialect.STATEFUL: DialectRoutes(
        algorithms="/algos_names/",
        algorithm_keys=("algos_names", "services"),
        parameters="/algos/{algo}/required_parameters",
        schema_key="properties",
        info="/algos/{algo}",
    ),
    ServerDialect.SERVERKIT: DialectRoutes(
        algorithms="/services",
        algorithm_keys=("services",),
        parameters="/{algo}/parameters",
        schema_key="properties",
        process="/{algo}/process",
        sample_images="/{algo}/sample_images",
        documentation="/{algo}/info",
    ),
}

# stateful dialect 전용 경로
STATEFUL_IMAGE = "/image"
STATEFUL_IMAGE_BYTES = "/image_bytes"
STATEFUL_PARAMETERS = "/image/{algo}/parameters"
STATEFUL_RESULT = "/image/{algo}/result"
STATEFUL_RESULT_ENDPOINT = "/image/{algo}/result/{endpoint}"


def parse_dialect(value) -> Optional[ServerDialect]:
    """설정 값 → ServerDialect ("auto"/None은 None)"""
    if value is None or isinstance(value, ServerDialect):
        return value
    text = str(value).strip().lower()
    if text in ("", "auto"):
        return None
    aliases = {"a": ServerDialect.SIMPLE, "b": ServerDialect.STATEFUL, "c": ServerDialect.SERVERKIT}
    if text in aliases:
        return aliases[text]
    try:
        return ServerDialect(text)
    except ValueError:
        raise ValueError(f"Unknown server dialect: {value!r}") from None


def detect_dialect(transport: HttpTransport) -> ServerDialect:
    """Probe the server's listing routes to pick a dialect.

    ``/algos_names/`` only exists on the stateful dialect. The simple dialect
    shares every listing route with the serverkit one and cannot be told
    apart, so it has to be configured explicitly.
    """
    for dialect in (ServerDialect.STATEFUL, ServerDialect.SERVERKIT):
        try:
            response = transport.get(dialect.routes.algorithms)
        except TransportError as e:
            raise ServerConnectionError(f"Could not detect server dialect: {e}") from e
        if response.status_code == 200:
            log.info("Detected %s server dialect", dialect.value)
            return dialect
    raise ServerConnectionError(f"Could not detect server dialect on {transport.base_url}")
