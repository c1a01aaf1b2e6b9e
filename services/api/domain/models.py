"""API request/response models."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class CreateWorkflowRequest(BaseModel):
    """Request body for registering a workflow graph"""
    name: Optional[str] = None
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class CreateWorkflowResponse(BaseModel):
    workflow_id: str
    name: Optional[str] = None
    node_count: int


class ExecutionRecordResponse(BaseModel):
    execution_id: str
    record: Dict[str, Any]
