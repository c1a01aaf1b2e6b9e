"""LLM task handler for OpenAI-compatible chat completion APIs."""

import json
import logging
import re
from typing import Dict, Any, List
import requests
from requests.exceptions import RequestException, Timeout, ConnectionError
from services.worker.handlers.registry import register_task
from shared.exceptions import TaskDispatchError, TaskError
from shared.constants import (
    RETRYABLE_HTTP_STATUS_CODES,
    COMPLETION_TOKEN_MODEL_MARKERS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
)
from shared.schemas import GptTaskConfig, parse_config_mapping
from shared.settings import WorkerSettings

RESIDUAL_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


def flatten_inputs(inputs: Dict[str, Any]) -> Dict[str, Any]:
    """Flattens each record in inputs to <key>.<field> entries, lifting its data/body children"""
    flat: Dict[str, Any] = {}
    for node_key, node_data in inputs.items():
        if not isinstance(node_data, dict):
            continue
        for nested in ("data", "body"):
            if isinstance(node_data.get(nested), dict):
                flat.update({f"{node_key}.{k}": v for k, v in node_data[nested].items()})
        flat.update({
            f"{node_key}.{k}": v for k, v in node_data.items()
            if k not in ("data", "body") and v is not None
        })
        if isinstance(node_data.get(node_key), dict):
            flat.update({f"{node_key}.{k}": v for k, v in node_data[node_key].items() if v is not None})
    return flat


def _prompt_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    return value if isinstance(value, str) else json.dumps(value)


def fill_residual_placeholders(prompt: str, inputs: Dict[str, Any]) -> str:
    """Last pass over placeholders still left in the prompt; unknown ones stay as written"""
    if "{{" not in prompt:
        return prompt
    flat = flatten_inputs(inputs)

    def replace(match: re.Match) -> str:
        key = match.group(1)
        return _prompt_text(flat[key]) if key in flat else match.group(0)

    return RESIDUAL_PLACEHOLDER_PATTERN.sub(replace, prompt)


def uses_completion_tokens(model: str) -> bool:
    return any(marker in model for marker in COMPLETION_TOKEN_MODEL_MARKERS)


def build_messages(config: GptTaskConfig) -> List[Dict[str, str]]:
    messages = []
    if config.system_message:
        messages.append({"role": "system", "content": config.system_message})
    messages.append({"role": "user", "content": config.prompt})
    return messages


def build_payload(config: GptTaskConfig, default_model: str) -> Dict[str, Any]:
    model = config.model or default_model
    payload: Dict[str, Any] = {
        "model": model,
        "messages": build_messages(config),
        "top_p": config.top_p or 1,
    }

    max_tokens = config.max_tokens or DEFAULT_MAX_TOKENS
    if uses_completion_tokens(model):
        # These model families reject temperature
        payload["max_completion_tokens"] = max_tokens
    else:
        payload["max_tokens"] = max_tokens
        payload["temperature"] = config.temperature if config.temperature is not None else DEFAULT_TEMPERATURE

    if (config.response_format or {}).get("type") == "json_object":
        payload["response_format"] = {"type": "json_object"}
    return payload


@register_task("gptTask")
def gpt_task_handler(config: Dict[str, Any], context: Dict[str, Any], settings: WorkerSettings) -> Dict[str, Any]:
    if not settings.llm_api_key:
        raise TaskDispatchError(TaskError(
            error_type="CONFIGURATION_ERROR",
            error_message="OpenAI API key not configured",
            is_retryable=False,
        ))

    try:
        task_config = GptTaskConfig.model_validate(parse_config_mapping(config))
    except ValueError as e:
        raise TaskDispatchError(TaskError(
            error_type="CONFIGURATION_ERROR",
            error_message=f"Invalid gptTask configuration: {e}",
            is_retryable=False,
        ))

    if context:
        task_config = task_config.model_copy(update={"prompt": fill_residual_placeholders(task_config.prompt, context)})

    payload = build_payload(task_config, settings.default_model)
    url = f"{settings.llm_base_url.rstrip('/')}/chat/completions"
    logging.info("Calling LLM", extra={"model": payload["model"], "prompt_length": len(task_config.prompt)})

    try:
        response = requests.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.llm_api_key}"},
            timeout=settings.llm_timeout,
        )
    except (Timeout, ConnectionError) as e:
        raise TaskDispatchError(TaskError(
            error_type="NETWORK_ERROR",
            error_message=f"Network error: {str(e)}",
            is_retryable=True,
            context={"model": payload["model"], "error_class": type(e).__name__}
        ))
    except RequestException as e:
        raise TaskDispatchError(TaskError(
            error_type="REQUEST_ERROR",
            error_message=f"LLM request failed: {str(e)}",
            is_retryable=False,
            context={"model": payload["model"]}
        ))

    if not response.ok:
        retry_after = None
        retry_after_header = response.headers.get("Retry-After")
        if response.status_code == 429 and retry_after_header and retry_after_header.isdigit():
            retry_after = int(retry_after_header)

        raise TaskDispatchError(TaskError(
            error_type="LLM_SERVICE_ERROR",
            error_message=f"LLM service returned {response.status_code}: {response.text[:200]}",
            http_status_code=response.status_code,
            is_retryable=response.status_code in RETRYABLE_HTTP_STATUS_CODES,
            retry_after_seconds=retry_after,
            context={"model": payload["model"]}
        ))

    data = response.json()
    choices = data.get("choices") or []
    if not choices:
        raise TaskDispatchError(TaskError(
            error_type="LLM_SERVICE_ERROR",
            error_message="LLM response contained no choices",
            is_retryable=True,
            context={"model": payload["model"]}
        ))

    return {
        "result": (choices[0].get("message") or {}).get("content"),
        "usage": data.get("usage"),
        "model": data.get("model", payload["model"]),
    }
