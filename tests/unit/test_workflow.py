"""
Unit tests for workflow execution: batch walking, parallel optimization,
completion gating and failure results.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock
from services.orchestrator.engine.workflow import INCOMPLETE_MESSAGE, WorkflowEngine
from services.orchestrator.infra.memory_store import InMemoryExecutionStore
from shared.exceptions import TaskDispatchError, TaskError
from shared.settings import EngineSettings
from shared.types import ExecutionStatus, WorkflowGraph

FAST_SETTINGS = EngineSettings(initial_retry_delay=0, max_retry_delay=0)


def _graph(nodes, edges):
    return WorkflowGraph.model_validate({
        "nodes": nodes,
        "edges": [{"source": s, "target": t} for s, t in edges],
    })


def _engine(side_effect=None, settings=FAST_SETTINGS):
    dispatcher = AsyncMock()
    dispatcher.dispatch.side_effect = side_effect
    store = InMemoryExecutionStore()
    return WorkflowEngine(dispatcher, store=store, settings=settings), dispatcher, store


def _gpt_graph(count):
    nodes = [{"id": "t", "type": "trigger"}]
    nodes += [
        {"id": f"g{n}", "type": "gptTask", "nodeNumber": n, "config": {"prompt": f"p{n}"}}
        for n in range(1, count + 1)
    ]
    nodes.append({"id": "r", "type": "webhookResponse", "config": {"responseBody": '{"first": "{{GPT 1.result}}"}'}})
    edges = [("t", f"g{n}") for n in range(1, count + 1)] + [(f"g{n}", "r") for n in range(1, count + 1)]
    return _graph(nodes, edges)


def _gpt_dispatch(failing_prompts):
    async def dispatch(task_type, config, context):
        if config["prompt"] in failing_prompts:
            raise TaskDispatchError(TaskError(error_type="LLM_SERVICE_ERROR", error_message="quota"))
        return {"result": f"text for {config['prompt']}", "usage": {}, "model": "m"}
    return dispatch


@pytest.mark.asyncio
async def test_trigger_to_response_echoes_payload():
    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "r", "type": "webhookResponse", "config": {"responseBody": '{"echo": "{{msg}}"}'}},
    ], [("t", "r")])
    engine, dispatcher, store = _engine()

    result = await engine.run(graph, {"msg": "hi"}, workflow_id="wf-1")

    assert result.status == ExecutionStatus.COMPLETED
    assert result.message == "Workflow executed successfully"
    assert result.executed_nodes == ["t", "r"]
    assert result.webhook_response.status_code == 200
    assert result.webhook_response.body == {"echo": "hi"}
    dispatcher.dispatch.assert_not_awaited()

    record = store.records[result.execution_id]
    assert record["status"] == "completed"
    assert record["workflow_id"] == "wf-1"


@pytest.mark.asyncio
async def test_parallel_http_tasks_populate_numbered_aliases():
    async def dispatch(task_type, config, context):
        return {"status": 200, "body": {"n": config["n"]}, "success": True}

    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "h1", "type": "httpTask", "config": {"url": "https://a.test", "n": 1}},
        {"id": "h2", "type": "httpTask", "config": {"url": "https://b.test", "n": 2}},
        {"id": "r", "type": "webhookResponse", "config": {
            "responseBody": '{"first": {{HTTP 1.response.n}}, "second": {{HTTP 2.response.n}}}',
        }},
    ], [("t", "h1"), ("t", "h2"), ("h1", "r"), ("h2", "r")])
    engine, dispatcher, store = _engine(dispatch)

    result = await engine.run(graph, {})

    assert result.parallel_optimized
    assert result.status == ExecutionStatus.COMPLETED
    assert result.http_task_count == 2
    assert result.gpt_task_count == 0
    assert result.executed_nodes == ["t", "h1", "h2", "r"]
    assert result.data["HTTP 1"]["response"] == {"n": 1}
    assert result.data["HTTP Task 2"]["response"] == {"n": 2}
    assert result.webhook_response.body == {"first": 1, "second": 2}
    assert dispatcher.dispatch.await_count == 2
    assert store.records[result.execution_id]["result_data"]["optimizedParallelExecution"] is True


@pytest.mark.asyncio
async def test_parallel_results_keep_launch_numbering_when_settled_out_of_order():
    async def dispatch(task_type, config, context):
        if config["n"] == 1:
            await asyncio.sleep(0.05)
        return {"status": 200, "body": {"n": config["n"]}, "success": True}

    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "h1", "type": "httpTask", "config": {"url": "https://a.test", "n": 1}},
        {"id": "h2", "type": "httpTask", "config": {"url": "https://b.test", "n": 2}},
        {"id": "r", "type": "webhookResponse", "config": {
            "responseBody": '{"first": {{HTTP 1.response}}, "second": {{HTTP 2.response}}}',
        }},
    ], [("t", "h1"), ("t", "h2"), ("h1", "r"), ("h2", "r")])
    engine, _, _ = _engine(dispatch)

    result = await engine.run(graph, {})

    assert result.status == ExecutionStatus.COMPLETED
    assert result.data["HTTP 1"]["request_url"] == "https://a.test"
    assert result.data["HTTP 2"]["request_url"] == "https://b.test"
    assert result.webhook_response.body == {"first": {"n": 1}, "second": {"n": 2}}


@pytest.mark.asyncio
async def test_batch_nodes_do_not_see_sibling_results():
    seen = {}

    async def dispatch(task_type, config, context):
        seen[config["url"]] = set(context)
        return {"status": 200, "body": config["url"], "success": True}

    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "h1", "type": "httpTask", "config": {"url": "https://a.test"}},
        {"id": "h2", "type": "httpTask", "config": {"url": "https://b.test"}},
        {"id": "h3", "type": "httpTask", "config": {"url": "https://c.test"}},
    ], [("t", "h1"), ("t", "h2"), ("h1", "h3")])
    engine, _, _ = _engine(dispatch)

    result = await engine.run(graph, {"x": 1})

    assert result.status == ExecutionStatus.COMPLETED
    assert result.executed_nodes == ["t", "h1", "h2", "h3"]
    assert not {"h1", "HTTP 1", "HTTP 2"} & seen["https://b.test"]
    assert not {"h2", "HTTP 1", "HTTP 2"} & seen["https://a.test"]
    assert {"HTTP 1", "HTTP 2"} <= seen["https://c.test"]


@pytest.mark.asyncio
async def test_empty_response_body_fails_before_dispatch():
    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "h1", "type": "httpTask", "config": {"url": "https://a.test"}},
        {"id": "h2", "type": "httpTask", "config": {"url": "https://b.test"}},
        {"id": "r", "type": "webhookResponse", "config": {"responseBody": ""}},
    ], [("t", "h1"), ("t", "h2"), ("h1", "r"), ("h2", "r")])
    engine, dispatcher, store = _engine()

    result = await engine.run(graph, {})

    assert result.status == ExecutionStatus.FAILED
    assert result.error == "Workflow execution failed"
    assert result.details.reason == "configuration_error"
    dispatcher.dispatch.assert_not_awaited()
    assert store.records[result.execution_id]["status"] == "failed"


@pytest.mark.asyncio
async def test_four_of_five_gpt_results_is_partial_success():
    engine, _, store = _engine(_gpt_dispatch({"p5"}))

    result = await engine.run(_gpt_graph(5), {})

    assert result.status == ExecutionStatus.PARTIAL_SUCCESS
    assert result.gpt_task_count == 4
    assert result.webhook_response.body == {"first": "text for p1"}
    assert "r" in result.executed_nodes
    record = store.records[result.execution_id]
    assert record["status"] == "partial_success"
    assert record["error_details"]["missing_gpt_results"] == [5]


@pytest.mark.asyncio
async def test_three_of_five_gpt_results_blocks_response():
    engine, _, store = _engine(_gpt_dispatch({"p4", "p5"}))

    result = await engine.run(_gpt_graph(5), {})

    assert result.status == ExecutionStatus.INCOMPLETE
    assert result.error == "Workflow incomplete"
    assert result.message == INCOMPLETE_MESSAGE
    assert result.details.reason == "incomplete_results"
    assert result.webhook_response is None
    assert "r" not in result.executed_nodes
    record = store.records[result.execution_id]
    assert record["status"] == "incomplete"
    assert record["error_details"]["missing_gpt_results"] == [4, 5]


@pytest.mark.asyncio
async def test_majority_of_parallel_failures_fails_workflow():
    engine, _, store = _engine(_gpt_dispatch({"p1", "p2", "p3"}))

    result = await engine.run(_gpt_graph(5), {})

    assert result.status == ExecutionStatus.FAILED
    assert result.details.reason == "multiple_failures"
    assert store.records[result.execution_id]["status"] == "failed"


@pytest.mark.asyncio
async def test_parallel_timeout_returns_timeout_result():
    async def slow(task_type, config, context):
        await asyncio.sleep(1)
        return {"result": "late"}

    settings = EngineSettings(parallel_timeout=0.05, initial_retry_delay=0, max_retry_delay=0)
    engine, _, store = _engine(slow, settings)

    result = await engine.run(_gpt_graph(1), {})

    assert result.status == ExecutionStatus.TIMEOUT
    assert result.details.reason == "timeout"
    assert "timed out" in result.message
    assert store.records[result.execution_id]["status"] == "timeout"


@pytest.mark.asyncio
async def test_node_failure_stops_the_walk():
    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "d", "type": "router", "config": {"executionMode": {"mode": "parallel"}}},
        {"id": "h", "type": "httpTask", "config": {"url": "https://a.test"}},
    ], [("t", "d"), ("d", "h")])
    engine, dispatcher, _ = _engine()

    result = await engine.run(graph, {})

    assert result.status == ExecutionStatus.FAILED
    assert result.details.reason == "node_failure"
    assert result.message.startswith("Node d (router) failed")
    assert "h" not in result.executed_nodes
    dispatcher.dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_router_fans_out_to_all_branches():
    async def dispatch(task_type, config, context):
        return {"status": 200, "body": config["url"], "success": True}

    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "route", "type": "router", "config": {"executionMode": "parallel"}},
        {"id": "h1", "type": "httpTask", "config": {"url": "https://a.test"}},
        {"id": "h2", "type": "httpTask", "config": {"url": "https://b.test"}},
    ], [("t", "route"), ("route", "h1"), ("route", "h2")])
    engine, dispatcher, _ = _engine(dispatch)

    result = await engine.run(graph, {"x": 1})

    assert result.status == ExecutionStatus.COMPLETED
    assert result.executed_nodes == ["t", "route", "h1", "h2"]
    assert result.data["HTTP 1"]["response"] == "https://a.test"
    assert result.data["HTTP 2"]["response"] == "https://b.test"
    assert result.data["HTTP"] == result.data["HTTP 1"]
    assert dispatcher.dispatch.await_count == 2


@pytest.mark.asyncio
async def test_task_error_in_batch_walk_is_stored_not_fatal():
    error = TaskDispatchError(TaskError(error_type="HTTP_ERROR", error_message="HTTP 404"))
    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "h", "type": "httpTask", "config": {"url": "https://a.test"}},
    ], [("t", "h")])
    engine, _, _ = _engine(error)

    result = await engine.run(graph, {})

    assert result.status == ExecutionStatus.COMPLETED
    assert result.data["HTTP 1"]["http_success"] is False
    assert result.data["HTTP 1"]["error"] == "HTTP 404"


@pytest.mark.asyncio
async def test_graph_without_trigger_returns_input():
    graph = _graph([{"id": "d", "type": "dataTransform"}], [])
    engine, _, store = _engine()

    result = await engine.run(graph, {"a": 1})

    assert result.message == "No workflow trigger found"
    assert result.data["a"] == 1
    assert store.records[result.execution_id]["status"] == "completed"


@pytest.mark.asyncio
async def test_store_failures_do_not_fail_the_run():
    graph = _graph([
        {"id": "t", "type": "trigger"},
        {"id": "r", "type": "webhookResponse", "config": {"responseBody": "done"}},
    ], [("t", "r")])
    store = AsyncMock()
    store.create_execution.return_value = "exec-1"
    store.update_execution.side_effect = ConnectionError("redis down")
    engine = WorkflowEngine(AsyncMock(), store=store, settings=FAST_SETTINGS)

    result = await engine.run(graph, {})

    assert result.status == ExecutionStatus.COMPLETED
    assert result.execution_id == "exec-1"
    assert result.webhook_response.body == "done"
