from __future__ import annotations
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from PIL import Image

from ..config import CONFIG, AppConfig
from ..errors import (
    DecodeError, RunCancelled, RunError, ServerKitError, TransportError, UnsupportedOperation,
)
from ..regions import RegionRequest
from .connection import ServerConnection
from .decoder import DecodeResult, decode_results
from .dialects import (
    STATEFUL_IMAGE, STATEFUL_IMAGE_BYTES, STATEFUL_PARAMETERS, STATEFUL_RESULT,
    STATEFUL_RESULT_ENDPOINT, ServerDialect,
)
from .imaging import RegionImage, decode_image_base64, encode_region_image, encode_region_image_base64
from .results import GEOMETRY_TYPES, InvalidRecord, ResultRecord, ResultType, parse_record, parse_records
from .schema import ParameterSet, translate_parameter_list, translate_schema
from .transport import HttpResponse

# output_endpoints 중 결과를 표시할 수 있는 타입
DISPLAYABLE_ENDPOINTS = tuple(t.value for t in ResultType if t in GEOMETRY_TYPES or t == ResultType.POINTS)


class RunState(Enum):
    IDLE = "idle"
    PARAMETERS_SUBMITTED = "parameters_submitted"
    IMAGE_SUBMITTED = "image_submitted"
    PROCESSING = "processing"
    RESULT_FETCHED = "result_fetched"
    DISPLAYED = "displayed"


class CancellationToken:
    """Checked between network steps of a run; nothing sets it by default."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled("Run cancelled")


@dataclass
class RunOutcome:
    algorithm: str
    region: RegionRequest
    result: DecodeResult
    state: RunState = RunState.RESULT_FETCHED
    output_endpoints: Tuple[str, ...] = ()


StateCallback = Callable[[RunState], None]
Parameters = Union[ParameterSet, Mapping[str, Any], None]


class AlgorithmClient:
    """알고리즘 서버 클라이언트 (연결 하나에 묶임)"""

    def __init__(self, connection: ServerConnection, config: Optional[AppConfig] = None):
        self.connection = connection
        self.config = config or CONFIG
        self.logger = logging.getLogger(__name__)

    @property
    def transport(self):
        return self.connection.transport

    @property
    def dialect(self) -> ServerDialect:
        return self.connection.dialect

    @property
    def routes(self):
        return self.connection.dialect.routes

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    # -------------------- 조회 --------------------
    def list_algorithms(self) -> List[str]:
        response = self.transport.get(self.routes.algorithms)
        if response.status_code != 200:
            self._log_http_error(response, "Could not retrieve algorithms from the server")
            raise ServerKitError(f"Could not retrieve algorithms (HTTP {response.status_code})")
        data = response.json_object()
        for key in self.routes.algorithm_keys:
            if key in data:
                names = data[key]
                if not isinstance(names, list):
                    raise DecodeError(f"'{key}' must be an array")
                return [str(n) for n in names]
        raise DecodeError(f"Algorithm list not found in response (expected one of {self.routes.algorithm_keys})")

    def get_schema(self, algo: str) -> Any:
        response = self.transport.get(self.routes.format(self.routes.parameters, algo))
        if response.status_code != 200:
            self._log_http_error(response, f"Could not retrieve the parameters of {algo}")
            raise ServerKitError(f"Could not retrieve the parameters of {algo} (HTTP {response.status_code})")
        data = response.json()
        # legacy list 스키마는 envelope 없이 배열로 옴
        if self.routes.schema_key is None or isinstance(data, list):
            return data
        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object for the parameters of {algo}")
        return data.get(self.routes.schema_key) or {}

    def get_parameters(self, algo: str) -> ParameterSet:
        """서버 스키마 → ParameterSet (파라미터가 없으면 빈 set)"""
        schema = self.get_schema(algo)
        if isinstance(schema, list):
            return translate_parameter_list(schema)
        return translate_schema(schema)

    def get_algorithm_info(self, algo: str) -> Dict[str, Any]:
        if self.routes.info is None:
            raise UnsupportedOperation(f"Algorithm info is not available on {self.dialect.value} servers")
        response = self.transport.get(self.routes.format(self.routes.info, algo))
        if response.status_code != 200:
            self._log_http_error(response, f"Could not retrieve info about {algo}")
            raise ServerKitError(f"Could not retrieve info about {algo} (HTTP {response.status_code})")
        return response.json_object()

    def get_sample_images(self, algo: str) -> List[Image.Image]:
        if self.routes.sample_images is None:
            raise UnsupportedOperation(f"Sample images are not available on {self.dialect.value} servers")
        response = self.transport.get(self.routes.format(self.routes.sample_images, algo))
        if response.status_code != 200:
            self._log_http_error(response, f"Could not retrieve sample images for {algo}")
            raise ServerKitError(f"Could not retrieve sample images for {algo} (HTTP {response.status_code})")
        entries = response.json_object().get("sample_images") or []
        images = []
        for entry in entries:
            encoded = entry.get("sample_image") if isinstance(entry, dict) else entry
            images.append(decode_image_base64(encoded))
        return images

    def documentation_url(self, algo: str) -> str:
        if self.routes.documentation is None:
            raise UnsupportedOperation(f"Documentation is not available on {self.dialect.value} servers")
        return self.transport.url_for(self.routes.format(self.routes.documentation, algo))

    # -------------------- 실행 --------------------
    def run(self, algo: str, parameters: Parameters, image: RegionImage, region: RegionRequest,
            token: Optional[CancellationToken] = None,
            on_state: Optional[StateCallback] = None) -> RunOutcome:
        """Send ``image`` (the pixels of ``region``) to ``algo`` and decode the result.

        Raises :class:`RunError` when a submission step is rejected and
        :class:`RunCancelled` when ``token`` was cancelled between steps.
        """
        token = token or CancellationToken()
        notify = on_state or (lambda state: None)
        if isinstance(parameters, ParameterSet):
            params = parameters.values()
        else:
            params = OrderedDict(parameters or {})

        self.logger.info(f"Running {algo} on {region} ({self.dialect.value} dialect)")
        token.raise_if_cancelled()
        if self.dialect.is_single_shot:
            records, endpoints = self._run_single_shot(algo, params, image, notify)
        else:
            records, endpoints = self._run_stateful(algo, params, image, token, notify)

        token.raise_if_cancelled()
        result = decode_results(records, region.transform, region.plane)
        notify(RunState.RESULT_FETCHED)
        return RunOutcome(algo, region, result, RunState.RESULT_FETCHED, endpoints)

    def _run_single_shot(self, algo: str, params: Mapping[str, Any], image: RegionImage,
                         notify: StateCallback) -> Tuple[List[ResultRecord], Tuple[str, ...]]:
        payload = OrderedDict(params)
        payload["image"] = encode_region_image_base64(image, self.config.run.image_format)

        response = self.transport.post(self.routes.format(self.routes.process, algo), payload)
        if response.status_code != 201:
            self._fail(response, f"Processing with {algo} failed", RunState.IDLE)
        # 파라미터와 이미지가 한 번의 요청으로 전달됨
        notify(RunState.PARAMETERS_SUBMITTED)
        notify(RunState.IMAGE_SUBMITTED)
        notify(RunState.PROCESSING)

        try:
            records = parse_records(response.json())
        except DecodeError as e:
            raise RunError(f"Invalid result payload from {algo}: {e}", RunState.PROCESSING) from e
        return records, ()

    def _run_stateful(self, algo: str, params: Mapping[str, Any], image: RegionImage,
                      token: CancellationToken,
                      notify: StateCallback) -> Tuple[List[ResultRecord], Tuple[str, ...]]:
        if params:
            response = self.transport.post(STATEFUL_PARAMETERS.format(algo=algo), {"parameters": dict(params)})
            if response.status_code != 201:
                self._fail(response, "Could not set the user parameters", RunState.IDLE)
        notify(RunState.PARAMETERS_SUBMITTED)

        token.raise_if_cancelled()
        image_bytes = encode_region_image(image, self.config.run.image_format)
        response = self.transport.post(STATEFUL_IMAGE_BYTES, image_bytes)
        if response.status_code != 201:
            self._fail(response, "Could not send image to server", RunState.PARAMETERS_SUBMITTED)
        notify(RunState.IMAGE_SUBMITTED)

        try:
            token.raise_if_cancelled()
            response = self.transport.post(STATEFUL_RESULT.format(algo=algo), "result")
            if response.status_code != 201:
                self._fail(response, f"Processing with {algo} failed", RunState.IMAGE_SUBMITTED)
            notify(RunState.PROCESSING)

            endpoints = self._output_endpoints(response)
            endpoint = next((e for e in endpoints if e in DISPLAYABLE_ENDPOINTS), None)
            if endpoint is None:
                self.logger.warning(f"Unknown display for result with endpoints: {list(endpoints)}")
                raise RunError(f"{algo} produced no displayable output (endpoints: {list(endpoints)})",
                               RunState.PROCESSING)

            token.raise_if_cancelled()
            response = self.transport.get(STATEFUL_RESULT_ENDPOINT.format(algo=algo, endpoint=endpoint))
            if response.status_code != 200:
                self._fail(response, f"Could not fetch the '{endpoint}' result of {algo}", RunState.PROCESSING)
            try:
                record = parse_record({"type": endpoint, "data": response.json()})
            except DecodeError as e:
                record = InvalidRecord(error=f"{endpoint}: {e}")
            self.logger.info(f"Displaying resulting {endpoint} from {algo}")
            return [record], endpoints
        finally:
            if self.config.server.delete_remote_image:
                self._delete_remote_image()

    def _output_endpoints(self, response: HttpResponse) -> Tuple[str, ...]:
        try:
            endpoints = response.json_object()["output_endpoints"]
            if not isinstance(endpoints, list):
                raise DecodeError("'output_endpoints' must be an array")
        except (DecodeError, KeyError) as e:
            self.logger.error("Unknown output types, cannot display result")
            raise RunError(f"Unknown output types, cannot display result: {e}", RunState.PROCESSING) from e
        return tuple(str(e) for e in endpoints)

    def _delete_remote_image(self) -> None:
        try:
            response = self.transport.delete(STATEFUL_IMAGE)
        except TransportError as e:
            self.logger.warning(f"Image data could not be deleted from the server: {e}")
            return
        if response.status_code != 204:
            self._log_http_error(response, "Image data could not be deleted from the server", logging.WARNING)

    # -------------------- 에러 --------------------
    def _log_http_error(self, response: HttpResponse, description: str, level: int = logging.ERROR) -> None:
        self.logger.log(level, "%s (HTTP %s: %s)", description, response.status_code, response.detail())

    def _fail(self, response: HttpResponse, description: str, state: RunState):
        self._log_http_error(response, description)
        raise RunError(description, state, response.status_code, response.detail())
