"""Pydantic schemas for node configuration validation."""

import json
from typing import Union, Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from shared.types import NodeType


class NodeConfigModel(BaseModel):
    # Node configs are user-authored and may carry extra UI fields
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TriggerConfig(NodeConfigModel):
    """Config schema for trigger nodes"""
    selected_hook: Optional[str] = Field(default=None, alias="selectedHook")
    trigger_type: Optional[str] = Field(default=None, alias="triggerType")


class HttpTaskConfig(NodeConfigModel):
    """Config schema for httpTask nodes"""
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: Optional[Union[Dict[str, Any], str]] = None
    body: Any = None
    content_type: Optional[str] = Field(default=None, alias="contentType")


class GptTaskConfig(NodeConfigModel):
    """Config schema for gptTask nodes"""
    prompt: str = ""
    system_message: Optional[str] = Field(default=None, alias="systemMessage")
    model: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    response_format: Optional[Dict[str, Any]] = None


class ConditionalConfig(NodeConfigModel):
    """Config schema for conditional nodes"""
    condition: Optional[str] = None
    true_value: Any = Field(default=None, alias="trueValue")
    false_value: Any = Field(default=None, alias="falseValue")


class TransformOperation(NodeConfigModel):
    operation: str
    field: str
    value: Any = None


class DataTransformConfig(NodeConfigModel):
    """Config schema for dataTransform nodes"""
    transformations: List[TransformOperation] = Field(default_factory=list)


class WebhookResponseConfig(NodeConfigModel):
    """Config schema for webhookResponse nodes"""
    # A {{ }} placeholder is kept as a string until the node runs
    status_code: Union[int, str] = Field(default=200, alias="statusCode")
    response_body: Any = Field(default=None, alias="responseBody")
    headers: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("status_code", mode="before")
    @classmethod
    def check_status_code(cls, value: Any) -> Union[int, str]:
        if isinstance(value, str) and "{{" in value:
            return value
        if isinstance(value, bool):
            raise ValueError(f"statusCode must be an integer, got {value!r}")
        try:
            code = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"statusCode must be an integer, got {value!r}")
        if not 100 <= code <= 599:
            raise ValueError(f"statusCode must be between 100 and 599, got {code}")
        return code

    @property
    def has_body(self) -> bool:
        return self.response_body is not None and self.response_body != ""


class RouterConfig(NodeConfigModel):
    """Config schema for router nodes"""
    execution_mode: str = Field(default="sequential", alias="executionMode")


# Node type schema registry
NODE_CONFIG_SCHEMAS = {
    NodeType.TRIGGER: TriggerConfig,
    NodeType.HTTP_TASK: HttpTaskConfig,
    NodeType.GPT_TASK: GptTaskConfig,
    NodeType.CONDITIONAL: ConditionalConfig,
    NodeType.DATA_TRANSFORM: DataTransformConfig,
    NodeType.WEBHOOK_RESPONSE: WebhookResponseConfig,
    NodeType.ROUTER: RouterConfig,
}


def parse_config_mapping(config: Any) -> Dict[str, Any]:
    """Node configs may arrive as JSON strings; anything unparseable becomes {}"""
    if isinstance(config, str):
        try:
            config = json.loads(config)
        except json.JSONDecodeError:
            return {}
    return dict(config) if isinstance(config, dict) else {}


def parse_node_config(node_type: NodeType, config: Any) -> NodeConfigModel:
    return NODE_CONFIG_SCHEMAS[node_type].model_validate(parse_config_mapping(config))


def validate_node_config(node_type: NodeType, config: Any) -> None:
    """Validates node config against its Pydantic schema"""
    try:
        parse_node_config(node_type, config)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration for node type '{node_type.value}': {str(e)}")
