"""알고리즘 실행 UI - 파라미터 대화상자 + 백그라운드 실행"""

from .parameters_dialog import ParametersDialog
from .run_task import AlgorithmRunTask, RunExecutor, RunTaskSignals

__all__ = ['ParametersDialog', 'AlgorithmRunTask', 'RunExecutor', 'RunTaskSignals']
