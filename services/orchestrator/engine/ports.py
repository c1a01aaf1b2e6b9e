"""Collaborator contracts the engine is wired with."""

from typing import Any, Dict, Mapping, Optional, Protocol


class TaskDispatcher(Protocol):
    """Runs httpTask / gptTask work outside the engine.

    Returns a payload such as {"status", "body", "success"} for HTTP tasks or
    {"result", "usage", "model"} for GPT tasks, either {"error": ...}, or raises
    TaskDispatchError.
    """

    async def dispatch(self, task_type: str, config: Any, context: Mapping[str, Any]) -> Dict[str, Any]:
        ...


class ExecutionStore(Protocol):
    """Execution record persistence used for progress tracking and audit"""

    async def create_execution(self, meta: Dict[str, Any]) -> Optional[str]:
        ...

    async def update_execution(self, execution_id: str, patch: Dict[str, Any]) -> None:
        ...

    async def read_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        ...
