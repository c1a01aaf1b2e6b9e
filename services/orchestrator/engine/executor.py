"""Per-type behaviour of a single, already-resolved workflow node."""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import ValidationError
from services.orchestrator.engine.aliases import extract_numbered_fields
from services.orchestrator.engine.ports import TaskDispatcher
from services.orchestrator.engine.template import TemplateResolver
from shared.exceptions import ConfigurationError, TaskDispatchError
from shared.schemas import (
    ConditionalConfig,
    DataTransformConfig,
    RouterConfig,
    WebhookResponseConfig,
    parse_config_mapping,
)
from shared.types import Node, NodeType, ResponseSpec
from shared.utils import utc_now_iso

NodeHandler = Callable[[Node, Mapping[str, Any]], Awaitable[Any]]

RESPONSE_BODY_KEYS = ("responseBody", "response_body")


class NodeExecutor:

    def __init__(self, dispatcher: TaskDispatcher, template_resolver: Optional[TemplateResolver] = None):
        self.dispatcher = dispatcher
        self.template_resolver = template_resolver or TemplateResolver()
        self._handlers: Dict[NodeType, NodeHandler] = {
            NodeType.TRIGGER: self._execute_trigger,
            NodeType.HTTP_TASK: self._execute_http_task,
            NodeType.GPT_TASK: self._execute_gpt_task,
            NodeType.CONDITIONAL: self._execute_conditional,
            NodeType.DATA_TRANSFORM: self._execute_data_transform,
            NodeType.WEBHOOK_RESPONSE: self._execute_webhook_response,
            NodeType.ROUTER: self._execute_router,
        }

    async def execute(self, node: Node, context: Mapping[str, Any]) -> Any:
        logging.debug("Executing node", extra={"node_id": node.id, "node_type": node.type.value})
        return await self._handlers[node.type](node, context)

    async def _execute_trigger(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        """Flattens the webhook payload so its fields are addressable directly"""
        nested = context.get("data")
        nested = dict(nested) if isinstance(nested, Mapping) else {}
        original = context.get("originalTriggerData")
        original = dict(original) if isinstance(original, Mapping) else {}
        original_request = original or dict(context)

        return {
            **context,
            **nested,
            **original,
            **extract_numbered_fields(original),
            **extract_numbered_fields(context),
            "body": nested or original_request,
            "originalRequest": original_request,
            "webhookData": {"request_body": original_request},
        }

    async def _dispatch(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            payload = await self.dispatcher.dispatch(node.type.value, node.config, dict(context))
        except TaskDispatchError as e:
            logging.warning("Task dispatch failed", extra={
                "node_id": node.id,
                "error_type": e.task_error.error_type,
                "is_retryable": e.is_retryable,
            })
            failure = {"error": e.task_error.error_message, "retryable": e.is_retryable}
            if e.task_error.retry_after_seconds:
                failure["retry_after"] = e.task_error.retry_after_seconds
            return failure
        except Exception as e:
            logging.warning("Task dispatch raised", extra={"node_id": node.id, "error": str(e)})
            return {"error": str(e) or type(e).__name__, "retryable": True}

        if not isinstance(payload, Mapping):
            return {"error": f"Unexpected {node.type.value} payload: {type(payload).__name__}", "retryable": False}
        return dict(payload)

    async def _execute_http_task(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        payload = await self._dispatch(node, context)
        if payload.get("error"):
            return {
                "error": payload["error"],
                "http_error": payload["error"],
                "http_success": False,
                "response": None,
                "retryable": payload.get("retryable", True),
                "retry_after": payload.get("retry_after"),
            }

        config = node.config if isinstance(node.config, Mapping) else {}
        body = payload.get("body", payload.get("response", payload.get("result")))
        return {
            "response": body,
            "http_response": body,
            "http_status": payload.get("status"),
            "http_success": payload.get("success"),
            "request_url": config.get("url"),
            "request_method": config.get("method"),
            "request_body": config.get("body"),
            "request_headers": config.get("headers"),
            "full_result": payload,
        }

    async def _execute_gpt_task(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        payload = await self._dispatch(node, context)
        if payload.get("error"):
            return {
                "error": payload["error"],
                "result": None,
                "retryable": payload.get("retryable", True),
                "retry_after": payload.get("retry_after"),
            }
        return {
            "result": payload.get("result"),
            "usage": payload.get("usage"),
            "model": payload.get("model"),
        }

    async def _execute_conditional(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        # Membership test only: true when the condition mentions any context key
        config = ConditionalConfig.model_validate(parse_config_mapping(node.config))
        condition = config.condition if isinstance(config.condition, str) else ""
        outcome = bool(condition) and any(key in condition for key in context)
        return {
            "condition": config.condition,
            "condition_result": outcome,
            "condition_value": config.true_value if outcome else config.false_value,
        }

    async def _execute_data_transform(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        settings = parse_config_mapping(node.config)
        transformed = dict(context)
        if not isinstance(settings.get("transformations"), list):
            return transformed

        try:
            config = DataTransformConfig.model_validate(settings)
        except ValidationError as e:
            logging.warning("Skipping invalid transformations", extra={"node_id": node.id, "error": str(e)})
            transformed["transform_error"] = str(e)
            return transformed

        for transform in config.transformations:
            if transform.operation == "add":
                transformed[transform.field] = transform.value
            elif transform.operation == "remove":
                transformed.pop(transform.field, None)
            elif transform.operation == "modify":
                if transform.field in transformed:
                    transformed[transform.field] = transform.value
            else:
                logging.warning("Ignoring unknown transform operation", extra={
                    "node_id": node.id,
                    "operation": transform.operation,
                })

        return transformed

    def _resolve_response_config(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        """Resolves the whole config: JSON-text configs in one pass, mappings field by field"""
        if isinstance(node.config, str):
            resolved = parse_config_mapping(self.template_resolver.resolve_string(node.config, context))
            # Escaped JSON inside a string body can leave the resolved text unparseable
            if resolved:
                return resolved

        resolved = {}
        for key, value in parse_config_mapping(node.config).items():
            if key in RESPONSE_BODY_KEYS and isinstance(value, str):
                # JSON text bodies: quoted placeholders get escaped, parsed afterwards
                resolved[key] = self.template_resolver.resolve_string(value, context)
            else:
                resolved[key] = self.template_resolver.resolve_text(value, context)
        return resolved

    async def _execute_webhook_response(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            config = WebhookResponseConfig.model_validate(self._resolve_response_config(node, context))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid webhook response configuration: {e}", node_id=node.id)

        if not config.has_body:
            raise ConfigurationError("Webhook response node requires a configured response body", node_id=node.id)
        if isinstance(config.status_code, str):
            raise ConfigurationError(f"Unresolved webhook response status: {config.status_code}", node_id=node.id)

        body = config.response_body
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except json.JSONDecodeError:
                pass

        response = ResponseSpec(
            status_code=config.status_code,
            body=body,
            headers={str(k): str(v) for k, v in config.headers.items()},
        )
        logging.info("Webhook response prepared", extra={"node_id": node.id, "status_code": response.status_code})

        return {
            "webhook_response": response.model_dump(by_alias=True, exclude_none=True),
            "result": body,
            "message": f"Webhook response sent with status {response.status_code}",
            "executedAt": utc_now_iso(),
        }

    async def _execute_router(self, node: Node, context: Mapping[str, Any]) -> Dict[str, Any]:
        # Every outgoing branch joins the next batch; the mode is informational
        config = RouterConfig.model_validate(parse_config_mapping(node.config))
        logging.info("Router fan-out", extra={"node_id": node.id, "execution_mode": config.execution_mode})
        return dict(context)
