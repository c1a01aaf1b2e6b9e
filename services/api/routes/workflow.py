"""Workflow registration and webhook API routes."""

import json
import logging
import re
import uuid
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile
from services.api.domain.models import CreateWorkflowRequest, CreateWorkflowResponse, ExecutionRecordResponse
from services.api.domain.validation import validate_workflow_graph
from services.api.infra.redis_store import WorkflowStore
from services.api.responses import build_http_response
from services.orchestrator.engine.workflow import WorkflowEngine
from services.orchestrator.infra.redis_store import RedisExecutionStore
from services.worker.dispatcher import LocalTaskDispatcher
from shared.exceptions import GraphValidationError
from shared.settings import EngineSettings
from shared.types import WorkflowGraph

router = APIRouter()


@lru_cache
def get_workflow_store() -> WorkflowStore:
    return WorkflowStore()


@lru_cache
def get_execution_store() -> RedisExecutionStore:
    return RedisExecutionStore()


@lru_cache
def get_engine() -> WorkflowEngine:
    return WorkflowEngine(LocalTaskDispatcher(), get_execution_store(), EngineSettings.from_env())


def parse_json_body(text: str) -> Any:
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    # Trailing commas are the most common hand-written mistake
    cleaned = re.sub(r",\s*]", "]", re.sub(r",\s*}", "}", text))
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return {"raw_body": text}


def describe_form_value(value: Any) -> Any:
    if isinstance(value, UploadFile):
        return {"filename": value.filename, "type": value.content_type, "size": value.size}
    return value


async def parse_request_body(request: Request) -> Dict[str, Any]:
    """JSON, form or text body, merged over query parameters (body wins)"""
    content_type = request.headers.get("content-type", "")

    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        body: Any = {key: describe_form_value(value) for key, value in form.multi_items()}
    else:
        text = (await request.body()).decode("utf-8", errors="replace")
        if "application/json" in content_type:
            body = parse_json_body(text)
        elif "text/" in content_type:
            body = {"body": text}
        elif not text.strip():
            body = {}
        else:
            try:
                body = json.loads(text)
            except json.JSONDecodeError:
                body = {"body": text}

    if not isinstance(body, dict):
        body = {"body": body}
    return {**dict(request.query_params), **body}


def build_trigger_input(
    request_body: Dict[str, Any],
    headers: Dict[str, str],
    webhook_id: str,
    webhook_name: Optional[str],
) -> Dict[str, Any]:
    """Request fields at the top level plus webhook metadata"""
    return {
        **request_body,
        "originalRequest": request_body,
        "webhookHeaders": headers,
        "webhookId": webhook_id,
        "webhookName": webhook_name,
        "body": request_body,
        "webhookData": {
            "id": webhook_id,
            "name": webhook_name,
            "request_body": request_body,
            "request_headers": headers,
        },
    }


@router.post("/workflow", response_model=CreateWorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(request: CreateWorkflowRequest, workflow_store: WorkflowStore = Depends(get_workflow_store)):
    try:
        graph = validate_workflow_graph(request.nodes, request.edges)
    except GraphValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    workflow_id = str(uuid.uuid4())
    workflow_store.store_workflow(workflow_id, {
        "name": request.name,
        **graph.model_dump(mode="json", by_alias=True, exclude_none=True),
    })
    logging.info("Workflow registered", extra={"workflow_id": workflow_id, "node_count": len(graph.nodes)})

    return CreateWorkflowResponse(workflow_id=workflow_id, name=request.name, node_count=len(graph.nodes))


@router.post("/webhook/{workflow_id}")
async def handle_webhook(
    workflow_id: str,
    request: Request,
    workflow_store: WorkflowStore = Depends(get_workflow_store),
    engine: WorkflowEngine = Depends(get_engine),
):
    workflow = workflow_store.get_workflow(workflow_id)
    if not workflow:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow {workflow_id} not found")

    request_body = await parse_request_body(request)
    headers = dict(request.headers)
    graph = WorkflowGraph.model_validate({"nodes": workflow.get("nodes", []), "edges": workflow.get("edges", [])})

    webhook_request_id = str(uuid.uuid4())
    logging.info("Webhook received", extra={
        "workflow_id": workflow_id,
        "webhook_request_id": webhook_request_id,
        "fields": list(request_body),
    })

    result = await engine.run(
        graph,
        build_trigger_input(request_body, headers, workflow_id, workflow.get("name")),
        workflow_id=workflow_id,
        webhook_request_id=webhook_request_id,
    )

    status_code, response_headers, body = build_http_response(result, request_body)
    return JSONResponse(content=body, status_code=status_code, headers=response_headers)


@router.get("/executions/{execution_id}", response_model=ExecutionRecordResponse)
async def get_execution(execution_id: str, execution_store: RedisExecutionStore = Depends(get_execution_store)):
    record = await execution_store.read_execution(execution_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail=f"Execution {execution_id} not found")

    return ExecutionRecordResponse(execution_id=execution_id, record=record)
