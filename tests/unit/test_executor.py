"""
Unit tests for per-type node execution.
"""

import json
import pytest
from pydantic import ValidationError
from unittest.mock import AsyncMock
from services.orchestrator.engine.executor import NodeExecutor
from shared.exceptions import ConfigurationError, TaskDispatchError, TaskError
from shared.types import Node


def _executor(dispatch_result=None, side_effect=None):
    dispatcher = AsyncMock()
    dispatcher.dispatch.return_value = dispatch_result
    dispatcher.dispatch.side_effect = side_effect
    return NodeExecutor(dispatcher), dispatcher


@pytest.mark.asyncio
async def test_trigger_flattens_payload():
    executor, _ = _executor()
    context = {"originalTriggerData": {"prompt1": "a", "x": 1}, "data": {"prompt1": "a", "x": 1}}

    result = await executor.execute(Node(id="t", type="trigger"), context)

    assert result["prompt1"] == "a"
    assert result["body"] == {"prompt1": "a", "x": 1}
    assert result["originalRequest"] == {"prompt1": "a", "x": 1}
    assert result["webhookData"] == {"request_body": {"prompt1": "a", "x": 1}}


@pytest.mark.asyncio
async def test_http_task_success_shape():
    executor, dispatcher = _executor({"status": 200, "body": {"ok": True}, "success": True})
    node = Node(id="h", type="httpTask", config={"url": "https://api.test/x", "method": "POST", "body": "{}"})

    result = await executor.execute(node, {"k": "v"})

    dispatcher.dispatch.assert_awaited_once_with("httpTask", node.config, {"k": "v"})
    assert result["response"] == {"ok": True}
    assert result["http_response"] == {"ok": True}
    assert result["http_status"] == 200
    assert result["http_success"] is True
    assert result["request_url"] == "https://api.test/x"
    assert result["request_method"] == "POST"
    assert result["full_result"]["status"] == 200


@pytest.mark.asyncio
async def test_http_task_dispatch_error_becomes_error_result():
    error = TaskDispatchError(TaskError(error_type="HTTP_ERROR", error_message="HTTP 503", is_retryable=True))
    executor, _ = _executor(side_effect=error)

    result = await executor.execute(Node(id="h", type="httpTask", config={"url": "u"}), {})

    assert result["error"] == "HTTP 503"
    assert result["http_error"] == "HTTP 503"
    assert result["http_success"] is False
    assert result["response"] is None
    assert result["retryable"] is True


@pytest.mark.asyncio
async def test_gpt_task_success_and_failure():
    executor, _ = _executor({"result": "text", "usage": {"total_tokens": 3}, "model": "m"})
    node = Node(id="g", type="gptTask", config={"prompt": "hi"})

    assert await executor.execute(node, {}) == {"result": "text", "usage": {"total_tokens": 3}, "model": "m"}

    executor, _ = _executor({"error": "quota", "retryable": False})
    failed = await executor.execute(node, {})

    assert failed["error"] == "quota"
    assert failed["result"] is None
    assert failed["retryable"] is False


@pytest.mark.asyncio
async def test_conditional_checks_context_key_mentions():
    executor, _ = _executor()
    node = Node(id="c", type="conditional", config={
        "condition": "user_id exists",
        "trueValue": "yes",
        "falseValue": "no",
    })

    assert (await executor.execute(node, {"user_id": 1}))["condition_value"] == "yes"
    result = await executor.execute(node, {"other": 1})
    assert result["condition_result"] is False
    assert result["condition_value"] == "no"


@pytest.mark.asyncio
async def test_data_transform_operations_in_order():
    executor, _ = _executor()
    node = Node(id="d", type="dataTransform", config={"transformations": [
        {"operation": "add", "field": "a", "value": 1},
        {"operation": "modify", "field": "missing", "value": 2},
        {"operation": "modify", "field": "b", "value": 3},
        {"operation": "remove", "field": "c"},
        {"operation": "explode", "field": "b"},
    ]})
    context = {"b": 0, "c": 0}

    result = await executor.execute(node, context)

    assert result == {"a": 1, "b": 3}
    assert context == {"b": 0, "c": 0}


@pytest.mark.asyncio
async def test_webhook_response_resolves_json_string_body():
    executor, _ = _executor()
    node = Node(id="r", type="webhookResponse", config={
        "statusCode": "201",
        "responseBody": '{"echo": "{{msg}}", "count": 2}',
        "headers": {"X-Count": 2},
    })

    result = await executor.execute(node, {"msg": "hi"})

    assert result["webhook_response"] == {
        "statusCode": 201,
        "body": {"echo": "hi", "count": 2},
        "headers": {"X-Count": "2"},
    }
    assert result["result"] == {"echo": "hi", "count": 2}
    assert "executedAt" in result


@pytest.mark.asyncio
async def test_webhook_response_resolves_object_body_and_config_string():
    executor, _ = _executor()
    node = Node(id="r", type="webhookResponse", config='{"responseBody": {"v": "{{n}}"}}')

    result = await executor.execute(node, {"n": 5})

    assert result["webhook_response"]["statusCode"] == 200
    assert result["webhook_response"]["body"] == {"v": "5"}


@pytest.mark.asyncio
async def test_webhook_response_without_body_is_configuration_error():
    executor, _ = _executor()

    with pytest.raises(ConfigurationError):
        await executor.execute(Node(id="r", type="webhookResponse", config={"responseBody": ""}), {})


@pytest.mark.asyncio
async def test_router_passes_context_through():
    executor, _ = _executor()
    context = {"a": 1}

    result = await executor.execute(Node(id="r", type="router", config={"executionMode": "parallel"}), context)

    assert result == context
    assert result is not context


@pytest.mark.asyncio
async def test_webhook_response_string_config_is_resolved_as_json_text():
    executor, _ = _executor()
    node = Node(id="r", type="webhookResponse", config='{"responseBody": {"echo": "{{prompt1}}"}}')

    result = await executor.execute(node, {"prompt1": "hi"})

    assert result["webhook_response"]["body"] == {"echo": "hi"}


@pytest.mark.asyncio
async def test_webhook_response_string_config_headers_are_resolved():
    executor, _ = _executor()
    node = Node(id="r", type="webhookResponse", config='{"responseBody": "{}", "headers": {"X-Id": "{{id}}"}}')

    result = await executor.execute(node, {"id": "abc"})

    assert result["webhook_response"]["headers"] == {"X-Id": "abc"}
    assert result["webhook_response"]["body"] == {}


@pytest.mark.asyncio
async def test_webhook_response_mapping_config_resolves_every_field():
    executor, _ = _executor()
    node = Node(id="r", type="webhookResponse", config={
        "statusCode": "{{code}}",
        "responseBody": {"echo": "{{prompt1}}", "tags": ["{{prompt1}}!"]},
        "headers": {"X-Id": "user-{{id}}"},
    })

    result = await executor.execute(node, {"prompt1": "hi", "id": "abc", "code": 201})

    assert result["webhook_response"] == {
        "statusCode": 201,
        "body": {"echo": "hi", "tags": ["hi!"]},
        "headers": {"X-Id": "user-abc"},
    }


@pytest.mark.asyncio
async def test_webhook_response_escaped_body_in_string_config():
    """A JSON-text body nested in a JSON-text config still resolves"""
    executor, _ = _executor()
    node = Node(id="r", type="webhookResponse", config=json.dumps({"responseBody": '{"echo": "{{msg}}"}'}))

    result = await executor.execute(node, {"msg": 'say "hi"'})

    assert result["webhook_response"]["body"] == {"echo": 'say "hi"'}


@pytest.mark.asyncio
async def test_webhook_response_unresolvable_status_is_configuration_error():
    executor, _ = _executor()
    node = Node(id="r", type="webhookResponse", config={"statusCode": "{{code}}", "responseBody": "ok"})

    with pytest.raises(ConfigurationError):
        await executor.execute(node, {})


@pytest.mark.asyncio
async def test_data_transform_is_lenient_with_bad_transformations():
    executor, _ = _executor()
    context = {"a": 1}

    skipped = await executor.execute(Node(id="d", type="dataTransform", config={"transformations": "nope"}), context)
    invalid = await executor.execute(
        Node(id="d", type="dataTransform", config={"transformations": [{"operation": "add"}]}),
        context,
    )

    assert skipped == {"a": 1}
    assert invalid["a"] == 1
    assert "transform_error" in invalid


@pytest.mark.asyncio
async def test_router_rejects_malformed_execution_mode():
    executor, _ = _executor()

    with pytest.raises(ValidationError):
        await executor.execute(Node(id="r", type="router", config={"executionMode": {"mode": "parallel"}}), {})
