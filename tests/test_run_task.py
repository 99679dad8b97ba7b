from unittest.mock import MagicMock

import pytest

pytest.importorskip("PySide6")

from PySide6.QtCore import QCoreApplication

from wsi_algos.client.algos import RunOutcome, RunState
from wsi_algos.config import AppConfig, RunConfig
from wsi_algos.errors import RunCancelled, RunError
from wsi_algos.gui.run_task import AlgorithmRunTask, RunExecutor
from wsi_algos.regions import RegionRequest

REGION = RegionRequest(0, 0, 4, 4)


@pytest.fixture(scope="module", autouse=True)
def qt_app():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


def _task(client):
    task = AlgorithmRunTask(client, "cellpose", {}, object(), REGION)
    received = {"state": [], "completed": [], "failed": [], "cancelled": 0}
    task.signals.state_changed.connect(received["state"].append)
    task.signals.completed.connect(received["completed"].append)
    task.signals.failed.connect(received["failed"].append)

    def on_cancelled():
        received["cancelled"] += 1
    task.signals.cancelled.connect(on_cancelled)
    return task, received


def test_completed_run_emits_outcome_and_states():
    outcome = RunOutcome("cellpose", REGION, MagicMock())
    client = MagicMock()

    def run(algo, params, image, region, token, on_state):
        on_state(RunState.PROCESSING)
        return outcome
    client.run.side_effect = run

    task, received = _task(client)
    task.run()
    assert received["completed"] == [outcome]
    assert received["state"] == ["processing"]
    assert received["failed"] == []


def test_failed_run_emits_message():
    client = MagicMock()
    client.run.side_effect = RunError("rejected", RunState.IDLE, 500, "boom")
    task, received = _task(client)
    task.run()
    assert len(received["failed"]) == 1
    assert "boom" in received["failed"][0]
    assert received["completed"] == []


def test_cancelled_run_emits_cancelled():
    client = MagicMock()
    client.run.side_effect = RunCancelled("stop")
    task, received = _task(client)
    task.run()
    assert received["cancelled"] == 1


def test_task_passes_its_token_to_the_client():
    client = MagicMock()
    task, _ = _task(client)
    task.cancel()
    task.run()
    assert client.run.call_args.kwargs["token"] is task.token
    assert task.token.cancelled


def test_executor_limits_pool_size_and_tracks_tasks():
    executor = RunExecutor(config=AppConfig(run=RunConfig(max_concurrent_runs=2)))
    assert executor.pool.maxThreadCount() == 2

    pool = MagicMock()
    executor = RunExecutor(pool=pool)
    task = AlgorithmRunTask(MagicMock(), "a", {}, object(), REGION)
    executor.submit(task)
    pool.start.assert_called_once_with(task)
    assert executor.active_tasks == [task]

    executor.cancel_all()
    assert task.token.cancelled

    task.signals.cancelled.emit()
    assert executor.active_tasks == []


def test_unexpected_error_still_emits_failed():
    client = MagicMock()
    client.run.side_effect = TypeError("Unsupported image type: str")
    task, received = _task(client)
    task.run()
    assert len(received["failed"]) == 1
    assert "Unsupported image type" in received["failed"][0]
    assert received["completed"] == []


def test_executor_forgets_task_after_unexpected_error():
    client = MagicMock()
    client.run.side_effect = OSError("disk full")
    pool = MagicMock()
    executor = RunExecutor(pool=pool)
    task = AlgorithmRunTask(client, "a", {}, object(), REGION)
    failures = []
    executor.submit(task, on_failed=failures.append)

    task.run()
    assert len(failures) == 1
    assert executor.active_tasks == []
