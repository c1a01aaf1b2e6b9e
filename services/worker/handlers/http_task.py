"""Outbound HTTP task handler."""

import json
import logging
from typing import Dict, Any, Optional
import requests
from requests.exceptions import RequestException, Timeout, ConnectionError
from services.worker.handlers.registry import register_task
from shared.exceptions import TaskDispatchError, TaskError
from shared.constants import RETRYABLE_HTTP_STATUS_CODES
from shared.schemas import HttpTaskConfig, parse_config_mapping
from shared.settings import WorkerSettings

MULTIPART_FORM_DATA = "multipart/form-data"

# Checked in order before falling back to a recursive search
URL_PATHS = (
    "url",
    "data.0.url",
    "data.0.revised_prompt",
    "image_url",
    "link",
    "download_url",
    "file_url",
    "result.url",
    "response.url",
)


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def _get_path(value: Any, path: str) -> Any:
    for part in path.split("."):
        if isinstance(value, list) and part.isdigit():
            index = int(part)
            value = value[index] if index < len(value) else None
        elif isinstance(value, dict):
            value = value.get(part)
        else:
            return None
    return value


def _find_url(value: Any) -> Optional[str]:
    if _is_url(value):
        return value
    children = value.values() if isinstance(value, dict) else value if isinstance(value, list) else ()
    for child in children:
        found = _find_url(child)
        if found:
            return found
    return None


def extract_url(body: Any) -> Optional[str]:
    """First URL-like value in a response body"""
    if isinstance(body, str):
        return body.strip() if _is_url(body) else None
    for path in URL_PATHS:
        candidate = _get_path(body, path)
        if _is_url(candidate):
            return candidate
    return _find_url(body)


def parse_form_lines(body: str) -> Dict[str, str]:
    """key=value lines into form fields; blank keys or values are skipped"""
    fields = {}
    for line in body.splitlines():
        key, _, value = line.strip().partition("=")
        if key.strip() and value.strip():
            fields[key.strip()] = value.strip()
    return fields


def build_headers(config: HttpTaskConfig) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if not config.content_type:
        headers["Content-Type"] = "application/json"
    elif config.content_type != MULTIPART_FORM_DATA:
        headers["Content-Type"] = config.content_type

    custom = config.headers
    if isinstance(custom, str):
        try:
            custom = json.loads(custom)
        except json.JSONDecodeError:
            logging.warning("Failed to parse headers, using defaults")
            custom = None
    if isinstance(custom, dict):
        headers.update({str(k): str(v) for k, v in custom.items()})
    return headers


def build_request_kwargs(config: HttpTaskConfig) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"headers": build_headers(config)}
    if config.method.upper() == "GET" or config.body in (None, ""):
        return kwargs

    if config.content_type == MULTIPART_FORM_DATA and isinstance(config.body, str):
        # requests sets the multipart boundary itself
        kwargs["headers"].pop("Content-Type", None)
        kwargs["files"] = {k: (None, v) for k, v in parse_form_lines(config.body).items()}
    elif isinstance(config.body, (dict, list)):
        kwargs["data"] = json.dumps(config.body)
    else:
        kwargs["data"] = str(config.body)
    return kwargs


def parse_response_body(response: requests.Response) -> Any:
    text = response.text
    if not text.strip():
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


@register_task("httpTask")
def http_task_handler(config: Dict[str, Any], context: Dict[str, Any], settings: WorkerSettings) -> Dict[str, Any]:
    try:
        task_config = HttpTaskConfig.model_validate(parse_config_mapping(config))
    except ValueError as e:
        raise TaskDispatchError(TaskError(
            error_type="CONFIGURATION_ERROR",
            error_message=f"Invalid httpTask configuration: {e}",
            is_retryable=False,
        ))

    url, method = task_config.url, task_config.method.upper()
    logging.info("Making HTTP request", extra={"url": url, "method": method})

    try:
        response = requests.request(method, url, timeout=settings.http_timeout, **build_request_kwargs(task_config))
    except (Timeout, ConnectionError) as e:
        # Network errors are retryable
        raise TaskDispatchError(TaskError(
            error_type="NETWORK_ERROR",
            error_message=f"Network error: {str(e)}",
            is_retryable=True,
            context={"url": url, "error_class": type(e).__name__}
        ))
    except RequestException as e:
        raise TaskDispatchError(TaskError(
            error_type="REQUEST_ERROR",
            error_message=f"Request failed: {str(e)}",
            is_retryable=False,
            context={"url": url}
        ))

    if response.status_code in RETRYABLE_HTTP_STATUS_CODES:
        retry_after = None
        if response.status_code == 429:
            retry_after_header = response.headers.get("Retry-After")
            if retry_after_header and retry_after_header.isdigit():
                retry_after = int(retry_after_header)

        raise TaskDispatchError(TaskError(
            error_type="HTTP_ERROR",
            error_message=f"HTTP {response.status_code}: {response.reason}",
            http_status_code=response.status_code,
            is_retryable=True,
            retry_after_seconds=retry_after,
            context={"url": url, "method": method}
        ))

    body = parse_response_body(response)
    extracted_url = extract_url(body)
    logging.info("HTTP request completed", extra={"url": url, "status_code": response.status_code})

    return {
        "status": response.status_code,
        "statusText": response.reason,
        "headers": dict(response.headers),
        "body": extracted_url or body,
        "response": extracted_url or body,
        "extractedUrl": extracted_url,
        "fullResponse": body,
        "success": response.ok,
    }
