"""Structured exception hierarchy for the workflow engine."""

from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from shared.types import ErrorCategory


class TaskError(BaseModel):
    """Structured error returned by task handlers"""
    error_type: str
    error_message: str
    http_status_code: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    is_retryable: bool = False
    context: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class WorkflowError(Exception):
    """Base exception for workflow errors"""

    category = ErrorCategory.SYSTEM

    def __init__(self, message: str, execution_id: str = "", **context):
        self.message = message
        self.execution_id = execution_id
        self.context = context
        super().__init__(message)


class ConfigurationError(WorkflowError):
    category = ErrorCategory.CONFIGURATION


class NodeExecutionError(WorkflowError):
    category = ErrorCategory.NODE_FAILURE

    def __init__(self, message: str, node_id: str, node_type: str, execution_id: str = "", **context):
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(message, execution_id, node_id=node_id, node_type=node_type, **context)


class IncompleteResultsError(WorkflowError):
    category = ErrorCategory.INCOMPLETE_RESULTS


class WorkflowTimeoutError(WorkflowError):
    category = ErrorCategory.TIMEOUT


class TooManyFailuresError(WorkflowError):
    category = ErrorCategory.MULTIPLE_FAILURES


class GraphValidationError(WorkflowError):
    category = ErrorCategory.CONFIGURATION


class CycleDetectedError(GraphValidationError):
    pass


class TaskDispatchError(Exception):
    """Raised by task handlers; wraps a TaskError so the runner can decide on retries"""

    def __init__(self, task_error: TaskError):
        self.task_error = task_error
        super().__init__(task_error.error_message)

    @property
    def is_retryable(self) -> bool:
        return self.task_error.is_retryable
