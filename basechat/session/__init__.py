"""
Inference session: command handling and the background worker process.
"""

from .controller import SessionController, SessionState, handle_safely, resolve_model_config
from .worker import InferenceWorkerManager, inference_worker_process, run_session_loop

__all__ = [
    'InferenceWorkerManager',
    'SessionController',
    'SessionState',
    'handle_safely',
    'inference_worker_process',
    'resolve_model_config',
    'run_session_loop',
]
