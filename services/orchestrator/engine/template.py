"""Template resolution for {{ key.path }} placeholders against the execution context.

Lookups are best-effort: an unresolvable reference never raises, it is replaced
with a value that keeps the surrounding JSON template valid.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence

from shared.utils import is_record

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
TRIGGER_FIELD_PATTERN = re.compile(r"^Trigger\s+\d+\.(.+)$")
TRAILING_NUMBER_PATTERN = re.compile(r"(\d+)$")


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


@dataclass(frozen=True)
class Lookup:
    """Outcome of a strategy that claimed an expression; value may be MISSING"""
    value: Any
    key: Optional[str] = None


LookupStrategy = Callable[[str, Mapping[str, Any]], Optional[Lookup]]


def exact_key_lookup(expr: str, context: Mapping[str, Any]) -> Optional[Lookup]:
    if expr in context:
        return Lookup(context[expr], expr)
    return None


def _trigger_alias_order(key: str) -> tuple:
    match = re.search(r"\d+", key)
    # Numbered aliases first by number, then the rest alphabetically
    return (0, int(match.group()), key) if match else (1, 0, key)


def trigger_field_lookup(expr: str, context: Mapping[str, Any]) -> Optional[Lookup]:
    """Trigger <n>.<field>: root, then originalRequest, then any Trigger alias"""
    match = TRIGGER_FIELD_PATTERN.match(expr)
    if not match:
        return None

    field = match.group(1)
    if field in context:
        return Lookup(context[field], field)

    original_request = context.get("originalRequest")
    if is_record(original_request) and field in original_request:
        return Lookup(original_request[field], "originalRequest")

    trigger_keys = sorted((k for k in context if k.startswith("Trigger ")), key=_trigger_alias_order)
    for key in trigger_keys:
        trigger_data = context[key]
        if is_record(trigger_data) and field in trigger_data:
            return Lookup(trigger_data[field], key)

    logging.debug("Trigger field not found", extra={"expression": expr, "field": field})
    return Lookup(MISSING)


def _key_priority(key: str) -> tuple:
    # Digit-bearing keys first ("GPT 2" before "GPT"), then longest first
    return (0 if re.search(r"\d", key) else 1, -len(key))


def select_context_key(expr: str, keys: Sequence[str]) -> Optional[str]:
    for key in sorted(keys, key=_key_priority):
        if expr == key or expr.startswith(key + "."):
            return key
    return None


def select_gpt_key(prefix: str, first_segment: str, context: Mapping[str, Any]) -> Optional[str]:
    """Fuzzy match for GPT references such as "GPT3.result" or "gpt task 3.result"."""
    number_match = TRAILING_NUMBER_PATTERN.search(prefix)
    requested = int(number_match.group(1)) if number_match else None

    gpt_keys = [
        k for k in sorted(context.keys(), key=_key_priority)
        if "gpt" in k.lower() and is_record(context[k]) and first_segment in context[k]
    ]
    if not gpt_keys:
        return None

    if requested is None:
        return gpt_keys[0]

    exact = (f"gpt {requested}", f"gpt{requested}")
    task = (f"gpt task {requested}", f"gpttask{requested}")
    word = re.compile(rf"\b{requested}\b")
    matchers = [
        lambda k: k.lower() in exact,
        lambda k: k.lower() in task,
        lambda k: bool(word.search(k)),
        lambda k: requested in [int(n) for n in re.findall(r"\d+", k)],
    ]
    for matches in matchers:
        candidate = next((k for k in gpt_keys if matches(k)), None)
        if candidate is not None:
            return candidate
    return None


def traverse_path(value: Any, path: str) -> Any:
    if not path:
        return value
    for part in path.split("."):
        if is_record(value) and part in value:
            value = value[part]
        else:
            return MISSING
    return value


def key_path_lookup(expr: str, context: Mapping[str, Any]) -> Optional[Lookup]:
    value, key = MISSING, select_context_key(expr, list(context.keys()))
    if key is not None:
        value = traverse_path(context[key], expr[len(key) + 1:])

    elif "." in expr:
        prefix, path = expr.split(".", 1)
        if "gpt" in prefix.lower():
            key = select_gpt_key(prefix, path.split(".", 1)[0], context)
            if key is not None:
                value = traverse_path(context[key], path)

    if value is not MISSING and expr.endswith(".response"):
        value = unwrap_response(value)
    return Lookup(value, key)


DEFAULT_STRATEGIES: List[LookupStrategy] = [
    exact_key_lookup,
    trigger_field_lookup,
    key_path_lookup,
]


def unwrap_response(value: Any) -> Any:
    """Normalizes heterogeneous task results to their useful payload"""
    if not is_record(value):
        return value
    http_response = value.get("http_response")
    if "http_response" in value and http_response and isinstance(http_response, (Mapping, list)):
        if is_record(http_response) and "body" in http_response:
            return http_response["body"]
        return http_response
    if "body" in value:
        return value["body"]
    response = value.get("response")
    if "response" in value and response and isinstance(response, (Mapping, list)):
        if is_record(response) and "body" in response:
            return response["body"]
        return response
    if "EntityID" in value and "Message" in value:
        return value["Message"] or "HTTP request failed"
    return value


def value_text(value: Any) -> str:
    """Strings as-is, missing/None as empty, anything else as JSON"""
    if value is MISSING or value is None:
        return ""
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)


def serialize_value(value: Any, in_quotes: bool) -> str:
    if in_quotes:
        return json.dumps(value_text(value), ensure_ascii=False)[1:-1]
    if value is MISSING:
        return '""'
    return json.dumps(value, ensure_ascii=False, default=str)


class TemplateResolver:

    def __init__(self, strategies: Optional[Sequence[LookupStrategy]] = None):
        self.strategies = list(strategies or DEFAULT_STRATEGIES)

    def resolve(self, template: Any, context: Mapping[str, Any]) -> Any:
        """Recursively resolves placeholders in every string of a JSON-like value"""
        if isinstance(template, str):
            return self.resolve_string(template, context)

        elif isinstance(template, dict):
            return {k: self.resolve(v, context) for k, v in template.items()}

        elif isinstance(template, list):
            return [self.resolve(item, context) for item in template]

        else:
            return template

    def resolve_string(self, template: str, context: Mapping[str, Any]) -> str:
        if "{{" not in template:
            return template

        def replace(match: re.Match) -> str:
            start, end = match.span()
            in_quotes = (
                start > 0 and template[start - 1] == '"'
                and end < len(template) and template[end] == '"'
            )
            expr = match.group(1).strip()
            value = self.lookup(expr, context)
            if value is MISSING:
                logging.debug("Placeholder not resolved", extra={"expression": expr})
            return serialize_value(value, in_quotes)

        return PLACEHOLDER_PATTERN.sub(replace, template)

    def resolve_text(self, template: Any, context: Mapping[str, Any]) -> Any:
        """Like resolve, but every string is treated as plain text rather than JSON.

        Placeholders are replaced by the value's text, so {"id": "{{user}}"}
        becomes {"id": "bob"}, matching what a quoted placeholder yields in a
        JSON template.
        """
        if isinstance(template, str):
            if "{{" not in template:
                return template
            return PLACEHOLDER_PATTERN.sub(
                lambda match: value_text(self.lookup(match.group(1).strip(), context)),
                template,
            )

        elif isinstance(template, dict):
            return {k: self.resolve_text(v, context) for k, v in template.items()}

        elif isinstance(template, list):
            return [self.resolve_text(item, context) for item in template]

        return template

    def lookup(self, expr: str, context: Mapping[str, Any]) -> Any:
        """Value referenced by expr, or MISSING"""
        for strategy in self.strategies:
            found = strategy(expr, context)
            if found is not None:
                return found.value
        return MISSING
