"""Maps a workflow result to the HTTP response returned to the webhook caller."""

import json
from typing import Any, Dict, Tuple

from shared.types import ErrorCategory, ResponseSpec, WorkflowResult

JSON_HEADERS = {"Content-Type": "application/json"}

ERROR_STATUS_CODES = {
    ErrorCategory.CONFIGURATION.value: 500,
    ErrorCategory.NODE_FAILURE.value: 502,
    ErrorCategory.MULTIPLE_FAILURES.value: 502,
    ErrorCategory.INCOMPLETE_RESULTS.value: 503,
    ErrorCategory.TIMEOUT.value: 504,
    ErrorCategory.SYSTEM.value: 500,
}


def error_status_code(result: WorkflowResult) -> int:
    reason = result.details.reason if result.details else ErrorCategory.SYSTEM.value
    return ERROR_STATUS_CODES.get(reason, 500)


def normalize_body(body: Any) -> Any:
    """String bodies are re-parsed when they hold a JSON object/array, else wrapped"""
    if not isinstance(body, str):
        return body
    trimmed = body.strip()
    if (trimmed.startswith("{") and trimmed.endswith("}")) or (trimmed.startswith("[") and trimmed.endswith("]")):
        try:
            return json.loads(trimmed)
        except json.JSONDecodeError:
            pass
    return {"result": body}


def configured_response(spec: ResponseSpec) -> Tuple[int, Dict[str, str], Any]:
    if spec.error:
        status_code = spec.status_code if spec.status_code >= 400 else 500
        return status_code, dict(JSON_HEADERS), {"error": spec.error}
    return spec.status_code, {**JSON_HEADERS, **spec.headers}, normalize_body(spec.body)


def build_http_response(result: WorkflowResult, request_body: Any = None) -> Tuple[int, Dict[str, str], Any]:
    """(status_code, headers, JSON-serializable body) for a finished run"""
    if result.error:
        body = {
            "error": result.error,
            "message": result.message,
            "details": result.details.model_dump(exclude_none=True) if result.details else None,
            "data": request_body,
        }
        return error_status_code(result), dict(JSON_HEADERS), body

    if result.has_webhook_response and result.webhook_response is not None:
        return configured_response(result.webhook_response)

    if result.data:
        return 200, dict(JSON_HEADERS), result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return 200, dict(JSON_HEADERS), {"message": "Webhook received successfully", "data": request_body}
