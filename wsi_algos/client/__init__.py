"""알고리즘 서버 클라이언트 - HTTP API 방식"""

from .algos import AlgorithmClient, CancellationToken, RunOutcome, RunState
from .connection import ConnectionManager, ServerConnection, normalize_address
from .decoder import DecodeResult, DecodedRecord, Notification, decode_results
from .dialects import ServerDialect, detect_dialect
from .results import NotificationLevel, ResultType, parse_records
from .schema import ParameterDescriptor, ParameterKind, ParameterSet, translate_schema
from .transport import HttpResponse, HttpTransport

__all__ = [
    'AlgorithmClient', 'CancellationToken', 'RunOutcome', 'RunState',
    'ConnectionManager', 'ServerConnection', 'normalize_address',
    'DecodeResult', 'DecodedRecord', 'Notification', 'decode_results',
    'ServerDialect', 'detect_dialect',
    'NotificationLevel', 'ResultType', 'parse_records',
    'ParameterDescriptor', 'ParameterKind', 'ParameterSet', 'translate_schema',
    'HttpResponse', 'HttpTransport',
]
