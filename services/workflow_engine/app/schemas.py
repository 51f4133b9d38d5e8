"""Pydantic schemas for API requests and responses."""

from __future__ import annotations

import re
from datetime import datetime
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ExecutionStatus, HttpMethod


# RFC 9110 token characters for header names.
_HEADER_NAME = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


def _check_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return value


def _check_headers(value: dict[str, str] | None) -> dict[str, str] | None:
    for name, header_value in (value or {}).items():
        if not _HEADER_NAME.fullmatch(name):
            raise ValueError(f"invalid header name: {name!r}")
        if not header_value.isascii() or not header_value.isprintable():
            raise ValueError(f"header {name} must be printable ASCII")
    return value


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    is_active: bool = True


class WorkflowUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    is_active: bool | None = None


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    description: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class WorkflowStepCreate(BaseModel):
    name: str = Field(min_length=1)
    method: HttpMethod
    url: str
    headers: dict[str, str] | None = None
    body: str | None = None
    step_order: int = Field(ge=0)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("headers")
    @classmethod
    def _validate_headers(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        return _check_headers(value)


class WorkflowStepUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    method: HttpMethod | None = None
    url: str | None = None
    headers: dict[str, str] | None = None
    body: str | None = None
    step_order: int | None = Field(default=None, ge=0)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str | None) -> str | None:
        return None if value is None else _check_url(value)

    @field_validator("headers")
    @classmethod
    def _validate_headers(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        return _check_headers(value)


class WorkflowStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_id: int
    name: str
    method: HttpMethod
    url: str
    headers: dict[str, str] | None
    body: str | None
    step_order: int
    created_at: datetime


class WorkflowExecutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workflow_id: int
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None
    error_message: str | None
    created_at: datetime


class StepExecutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    execution_id: int
    step_id: int
    status: ExecutionStatus
    response_status: int | None
    response_body: str | None
    error_message: str | None
    started_at: datetime
    completed_at: datetime | None
    created_at: datetime


class ExecutionDetailResponse(BaseModel):
    execution: WorkflowExecutionResponse
    step_executions: list[StepExecutionResponse]
