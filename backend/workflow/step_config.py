"""Typed step configurations, keyed by step type.

Stored step configuration is an opaque JSON payload whose shape depends on
the step type. Each type with an executor has a pydantic model here, and
``decode_step_config`` picks the model from ``CONFIG_DECODERS``. Wire names
are camelCase; snake_case is accepted as well.
"""

import json
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from core.constants import SUPPORTED_HTTP_METHODS, StepType, TransferMode, WebServiceMode
from core.exceptions import ConfigurationError


def _match_enum(enum_cls, value):
    if isinstance(value, enum_cls) or not isinstance(value, str):
        return value
    for member in enum_cls:
        if member.value.lower() == value.strip().lower():
            return member
    return value


class StepConfig(BaseModel):
    """Base for all step configurations."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ExecuteQueryConfig(StepConfig):
    """Run a saved query and keep its result table in the context."""

    query_view_id: int
    parameter_values: dict[str, str] = Field(default_factory=dict)
    result_key: str = Field(default="QueryResult", min_length=1)

    @field_validator("parameter_values", mode="before")
    @classmethod
    def stringify_values(cls, v):
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v


class DataTransferConfig(StepConfig):
    """Copy a saved query's result into a destination table."""

    source_query_view_id: int
    destination_connection_string: str = Field(min_length=1)
    destination_table_name: str = Field(min_length=1)
    mode: TransferMode = TransferMode.APPEND
    primary_key_columns: list[str] = Field(default_factory=list)
    batch_size: Optional[int] = Field(default=None, gt=0)

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        # "Insert" was the historical name of Append
        if isinstance(v, str) and v.strip().lower() == "insert":
            return TransferMode.APPEND
        return _match_enum(TransferMode, v)


class WebServiceConfig(StepConfig):
    """Call an HTTP endpoint per record or once for the whole table."""

    method: str = "POST"
    url: str = Field(min_length=1)
    mode: WebServiceMode = WebServiceMode.BATCH
    data_source: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("dataSource", "dataSourceKey", "data_source"),
    )
    body_template: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: int = Field(default=30, gt=0)
    max_retries: int = Field(default=3, ge=0)
    save_responses: bool = False
    response_table_name: Optional[str] = None

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        method = str(v or "POST").strip().upper()
        if method not in SUPPORTED_HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        return _match_enum(WebServiceMode, v)

    @field_validator("headers", mode="before")
    @classmethod
    def default_headers(cls, v):
        return v or {}


CONFIG_DECODERS: dict[StepType, type[StepConfig]] = {
    StepType.EXECUTE_QUERY: ExecuteQueryConfig,
    StepType.DATA_TRANSFER: DataTransferConfig,
    StepType.WEB_SERVICE_CALL: WebServiceConfig,
}


def decode_step_config(step_type: StepType, payload: Union[str, dict, StepConfig, None]) -> StepConfig:
    """Decode a stored configuration payload for ``step_type``.

    Raises:
        ConfigurationError: unknown step type, malformed JSON or invalid fields.
    """
    model = CONFIG_DECODERS.get(step_type)
    if model is None:
        raise ConfigurationError(f"No configuration decoder for step type {step_type.value}")

    if isinstance(payload, model):
        return payload

    data: Any = payload
    if data is None or data == "":
        data = {}
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid {step_type.value} configuration: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid {step_type.value} configuration: expected an object")

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid {step_type.value} configuration: {problems}")
