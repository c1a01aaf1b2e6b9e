"""Shared utilities."""

import json
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


def is_record(value: Any) -> bool:
    return isinstance(value, Mapping)


def first_int(text: Any) -> Optional[int]:
    """First run of digits in text, e.g. "GPT 3" -> 3"""
    if not isinstance(text, str):
        return None
    match = re.search(r"\d+", text)
    return int(match.group()) if match else None


def json_safe_copy(value: Any) -> Any:
    """Deep copy through JSON so stored results never share state with the producer"""
    return json.loads(json.dumps(value, default=str))


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
