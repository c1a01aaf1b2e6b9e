"""Shared types for the API, engine and worker layers."""

from enum import Enum
from typing import Dict, List, Any, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class NodeType(str, Enum):
    TRIGGER = "trigger"
    HTTP_TASK = "httpTask"
    GPT_TASK = "gptTask"
    CONDITIONAL = "conditional"
    DATA_TRANSFORM = "dataTransform"
    WEBHOOK_RESPONSE = "webhookResponse"
    ROUTER = "router"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    PARTIAL_SUCCESS = "partial_success"
    INCOMPLETE = "incomplete"


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration_error"
    NODE_FAILURE = "node_failure"
    INCOMPLETE_RESULTS = "incomplete_results"
    TIMEOUT = "timeout"
    MULTIPLE_FAILURES = "multiple_failures"
    SYSTEM = "system_error"


# Fields the editor stores under node["data"]
_NODE_DATA_FIELDS = ("config", "label", "nodeNumber", "createdAt")


class Node(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: NodeType
    config: Any = Field(default_factory=dict)
    label: Optional[str] = None
    node_number: Optional[int] = Field(default=None, alias="nodeNumber")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @model_validator(mode="before")
    @classmethod
    def lift_editor_data(cls, value: Any) -> Any:
        """Accepts the editor shape where config/label live under `data`"""
        if isinstance(value, dict) and isinstance(value.get("data"), dict):
            lifted = {k: v for k, v in value.items() if k != "data"}
            for field in _NODE_DATA_FIELDS:
                if field in value["data"] and field not in lifted:
                    lifted[field] = value["data"][field]
            return lifted
        return value

    @property
    def display_label(self) -> str:
        label = self.label
        if not label and isinstance(self.config, dict):
            label = self.config.get("label")
        return label.strip() if isinstance(label, str) else ""


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    id: Optional[str] = None


class WorkflowGraph(BaseModel):
    model_config = ConfigDict(frozen=True)

    nodes: List[Node]
    edges: List[Edge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def nodes_of_type(self, node_type: NodeType) -> List[Node]:
        return [n for n in self.nodes if n.type == node_type]

    @property
    def trigger_node(self) -> Optional[Node]:
        return next(iter(self.nodes_of_type(NodeType.TRIGGER)), None)

    @property
    def response_node(self) -> Optional[Node]:
        # Only the first webhookResponse node gates the response
        return next(iter(self.nodes_of_type(NodeType.WEBHOOK_RESPONSE)), None)

    def outgoing_targets(self, node_id: str) -> List[str]:
        return [e.target for e in self.edges if e.source == node_id]


class TaskResult(BaseModel):
    node_id: str
    node: Node
    result: Any = None
    failed: bool = False
    task_type: NodeType
    retry_count: int = 0
    execution_time: float = 0.0


class ResponseSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(default=200, alias="statusCode")
    body: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None


class ErrorDetails(BaseModel):
    reason: str
    suggestion: Optional[str] = None
    timestamp: str


class WorkflowResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: Optional[ExecutionStatus] = None
    executed_nodes: List[str] = Field(default_factory=list, alias="executedNodes")
    node_count: int = Field(default=0, alias="nodeCount")
    execution_id: Optional[str] = Field(default=None, alias="executionId")
    has_webhook_response: bool = Field(default=False, alias="hasWebhookResponse")
    webhook_response: Optional[ResponseSpec] = Field(default=None, alias="webhookResponse")
    error: Optional[str] = None
    details: Optional[ErrorDetails] = None
    http_task_count: Optional[int] = Field(default=None, alias="httpTaskCount")
    gpt_task_count: Optional[int] = Field(default=None, alias="gptTaskCount")
    total_parallel_tasks: Optional[int] = Field(default=None, alias="totalParallelTasks")
    parallel_optimized: bool = Field(default=False, alias="parallelOptimized")
