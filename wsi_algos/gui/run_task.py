from __future__ import annotations
import logging
from typing import Any, List, Mapping, Optional, Union

from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal

from ..client.algos import AlgorithmClient, CancellationToken, RunState
from ..client.imaging import RegionImage
from ..client.schema import ParameterSet
from ..config import CONFIG, AppConfig
from ..errors import RunCancelled, ServerKitError
from ..regions import RegionRequest


class RunTaskSignals(QObject):
    state_changed = Signal(str)  # RunState.value
    completed = Signal(object)  # RunOutcome
    failed = Signal(str)  # 에러 메시지
    cancelled = Signal()


class AlgorithmRunTask(QRunnable):
    """알고리즘 한 번 실행 (QThreadPool 워커에서 동작, UI 스레드 비차단)"""

    def __init__(self, client: AlgorithmClient, algorithm: str,
                 parameters: Union[ParameterSet, Mapping[str, Any], None],
                 image: RegionImage, region: RegionRequest,
                 token: Optional[CancellationToken] = None):
        super().__init__()
        self.client = client
        self.algorithm = algorithm
        self.parameters = parameters
        self.image = image
        self.region = region
        self.token = token or CancellationToken()
        self.signals = RunTaskSignals()
        self.logger = logging.getLogger(__name__)

    def cancel(self) -> None:
        self.token.cancel()

    def run(self) -> None:
        try:
            outcome = self.client.run(
                self.algorithm, self.parameters, self.image, self.region,
                token=self.token, on_state=self._emit_state,
            )
        except RunCancelled:
            self.logger.info(f"Run of {self.algorithm} cancelled")
            self.signals.cancelled.emit()
        except ServerKitError as e:
            error_msg = f"Processing with {self.algorithm} failed: {e}"
            self.logger.error(error_msg)
            self.signals.failed.emit(error_msg)
        except Exception as e:
            error_msg = f"Unexpected error while running {self.algorithm}: {e}"
            self.logger.error(error_msg)
            self.signals.failed.emit(error_msg)
        else:
            self.signals.completed.emit(outcome)

    def _emit_state(self, state: RunState) -> None:
        self.signals.state_changed.emit(state.value)


class RunExecutor:
    """알고리즘 실행 전용 스레드 풀"""

    def __init__(self, pool: QThreadPool | None = None, config: Optional[AppConfig] = None):
        cfg = config or CONFIG
        if pool is None:
            pool = QThreadPool()
            pool.setMaxThreadCount(max(1, cfg.run.max_concurrent_runs))
        self.pool = pool
        self._tasks: List[AlgorithmRunTask] = []

    @property
    def active_tasks(self) -> List[AlgorithmRunTask]:
        return list(self._tasks)

    def submit(self, task: AlgorithmRunTask, on_completed=None, on_failed=None,
               on_state=None, on_cancelled=None) -> AlgorithmRunTask:
        if on_completed:
            task.signals.completed.connect(on_completed)
        if on_failed:
            task.signals.failed.connect(on_failed)
        if on_state:
            task.signals.state_changed.connect(on_state)
        if on_cancelled:
            task.signals.cancelled.connect(on_cancelled)
        for signal in (task.signals.completed, task.signals.failed, task.signals.cancelled):
            signal.connect(lambda *_, t=task: self._forget(t))
        # 시그널 수신 전에 QRunnable이 삭제되지 않도록
        task.setAutoDelete(False)
        self._tasks.append(task)
        self.pool.start(task)
        return task

    def cancel_all(self) -> None:
        for task in self._tasks:
            task.cancel()

    def wait(self, msecs: int = -1) -> bool:
        return self.pool.waitForDone(msecs)

    def _forget(self, task: AlgorithmRunTask) -> None:
        if task in self._tasks:
            self._tasks.remove(task)
