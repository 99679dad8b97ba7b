"""Errors raised by the algorithm server client."""

from __future__ import annotations
from typing import Optional


class ServerKitError(Exception):
    """알고리즘 서버 클라이언트 에러의 기본 클래스"""
    pass


class ServerConnectionError(ServerKitError, ConnectionError):
    """서버 주소가 잘못되었거나 liveness 확인에 실패한 경우"""
    pass


class TransportError(ServerKitError, IOError):
    """HTTP 요청 도중 네트워크 레벨 에러"""
    pass


class SchemaError(ServerKitError, ValueError):
    """서버가 보낸 파라미터 스키마가 올바르지 않은 경우"""
    pass


class DecodeError(ServerKitError, ValueError):
    """결과 레코드 하나의 payload를 해석할 수 없는 경우"""
    pass


class UnsupportedOperation(ServerKitError):
    """현재 서버 dialect가 지원하지 않는 요청"""
    pass


class RunCancelled(ServerKitError):
    """취소 토큰에 의해 중단된 실행"""
    pass


class RunError(ServerKitError):
    """Run aborted by the client-side state machine.

    ``state`` is the last state reached before the abort, ``status_code`` and
    ``detail`` describe the offending HTTP response when there is one.
    """

    def __init__(self, message: str, state=None, status_code: Optional[int] = None,
                 detail: Optional[str] = None):
        super().__init__(message)
        self.state = state
        self.status_code = status_code
        self.detail = detail

    def __str__(self) -> str:
        text = super().__str__()
        if self.status_code is not None:
            text += f" (HTTP {self.status_code}: {self.detail})"
        return text
