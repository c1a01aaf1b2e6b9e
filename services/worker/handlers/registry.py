"""Task handler registry keyed by node type."""

from typing import Dict, Any, Callable, List
from shared.settings import WorkerSettings

TaskHandler = Callable[[Dict[str, Any], Dict[str, Any], WorkerSettings], Dict[str, Any]]
_task_registry: Dict[str, TaskHandler] = {}


def register_task(task_type: str):
    def decorator(func: TaskHandler):
        _task_registry[task_type] = func
        return func
    return decorator


def get_task_handler(task_type: str) -> TaskHandler:
    if task_type not in _task_registry:
        raise ValueError(f"Unknown task type: {task_type}")
    return _task_registry[task_type]


def list_task_types() -> List[str]:
    return list(_task_registry.keys())
