from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from analyzer.policy import ALLOWED_MODULES, FORBIDDEN_ATTRIBUTES, FORBIDDEN_NAMES

DEFAULT_MEMORY_LIMIT_BYTES = 5 * 1024 * 1024
DEFAULT_LOOP_TIMEOUT_MS = 2000

TBaseSchema = TypeVar("TBaseSchema", bound="BaseSchema")


class BaseSchema(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    def to_dict(self) -> dict[str, object]:
        return self.model_dump()

    @classmethod
    def from_json(cls: type[TBaseSchema], data: str) -> TBaseSchema:
        return cls.model_validate_json(data)

    @classmethod
    def from_dict(cls: type[TBaseSchema], data: Mapping[str, object]) -> TBaseSchema:
        return cls.model_validate(data)


class SandboxConfiguration(BaseSchema):
    """Per-invocation policy. Keys are accepted in snake_case or camelCase."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    forbidden_names: frozenset[str] = Field(default_factory=lambda: frozenset(FORBIDDEN_NAMES))
    forbidden_attributes: frozenset[str] = Field(default_factory=lambda: frozenset(FORBIDDEN_ATTRIBUTES))
    memory_limit_bytes: int = Field(default=DEFAULT_MEMORY_LIMIT_BYTES, gt=0)
    loop_timeout_ms: int = Field(default=DEFAULT_LOOP_TIMEOUT_MS, gt=0)
    allowed_modules: tuple[str, ...] = tuple(ALLOWED_MODULES)
    check_computed_bases: bool = False


class VariablePayload(BaseSchema):
    name: str
    value: Any = None


class ErrorPayload(BaseSchema):
    message: str


class VariableRead(BaseSchema):
    type: Literal["variableRead"] = "variableRead"
    payload: VariablePayload


class VariableChange(BaseSchema):
    type: Literal["variableChange"] = "variableChange"
    payload: VariablePayload


class ErrorEntry(BaseSchema):
    type: Literal["error"] = "error"
    payload: ErrorPayload

    @classmethod
    def from_message(cls, message: str) -> "ErrorEntry":
        return cls(payload=ErrorPayload(message=message))


LogEntry = Annotated[Union[VariableRead, VariableChange, ErrorEntry], Field(discriminator="type")]

LOG_ENTRY_ADAPTER: TypeAdapter[LogEntry] = TypeAdapter(LogEntry)


class ExitPayload(BaseSchema):
    status: Literal["completed", "aborted"]


class ExitFrame(BaseSchema):
    """Termination marker closing a sandbox unit's message stream."""

    type: Literal["exit"] = "exit"
    payload: ExitPayload

    @property
    def status(self) -> str:
        return self.payload.status
