"""
Tool invocation envelope.

Request/response shapes used to expose SCM operations as remotely
invocable tools, plus the descriptors advertising each tool's parameters
and its retry/timeout policy.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParameterType(StrEnum):
    STRING = "STRING"
    INTEGER = "INTEGER"
    BOOLEAN = "BOOLEAN"
    ARRAY = "ARRAY"
    OBJECT = "OBJECT"


class ParameterDescriptor(_CamelModel):
    type: ParameterType = ParameterType.STRING
    description: str
    required: bool = True
    nullable: bool = False
    examples: list[Any] = Field(default_factory=list)
    properties: dict[str, "ParameterDescriptor"] = Field(default_factory=dict)


class RetryPolicy(_CamelModel):
    """Advertised retry policy. Enforced by the caller's policy executor, not here."""

    enabled: bool = False
    max_attempts: int = 1
    initial_interval_ms: int = 500
    multiplier: float = 2.0
    max_interval_ms: int = 2000


class TimeoutPolicy(_CamelModel):
    timeout_ms: int = 5000
    fail_fast: bool = False
    grace_period_ms: int = 1000


class ResponseStatus(_CamelModel):
    status: str
    description: str
    content_type: str = "application/json"


class ToolExample(_CamelModel):
    title: str
    description: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None


class ResponseDescriptor(_CamelModel):
    """Describes the `result` payload a successful invocation carries."""

    response_schema: ParameterDescriptor
    statuses: list[ResponseStatus] = Field(default_factory=list)
    examples: list[ToolExample] = Field(default_factory=list)


class ToolStatus(StrEnum):
    ACTIVE = "ACTIVE"
    DEPRECATED = "DEPRECATED"


class ToolDescriptor(_CamelModel):
    name: str
    display_name: str
    description: str
    category: str = "Repository"
    version: str = "1.0.0"
    tags: list[str] = Field(default_factory=list)
    idempotent: bool = False
    parameters: dict[str, ParameterDescriptor] = Field(default_factory=dict)
    response: ResponseDescriptor | None = None
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout_policy: TimeoutPolicy = Field(default_factory=TimeoutPolicy)
    status: ToolStatus = ToolStatus.ACTIVE


class InvokeRequest(_CamelModel):
    id: str | None = None
    tool_id: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ErrorInfo(_CamelModel):
    code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] = Field(default_factory=dict)


class InvokeResponse(_CamelModel):
    id: str | None = None
    tool_id: str
    result: Any = None
    error: ErrorInfo | None = None
    executed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
