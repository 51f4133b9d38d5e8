from __future__ import annotations

from functools import lru_cache

from fastapi import Header, HTTPException, status
from pydantic_settings import BaseSettings

from src.common.settings import SettingsMeta

from .engine import ExecutionCoordinator
from .http_caller import HttpCaller
from .runner import StepRunner
from .store import ExecutionStore, WorkflowStore


class Settings(BaseSettings, metaclass=SettingsMeta):
    http_timeout_seconds: float = 30.0
    default_content_type: str = "application/json"
    create_schema_on_startup: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()


_caller: HttpCaller | None = None
_coordinator: ExecutionCoordinator | None = None


def get_workflow_store() -> WorkflowStore:
    return WorkflowStore()


def get_execution_store() -> ExecutionStore:
    return ExecutionStore()


def get_coordinator() -> ExecutionCoordinator:
    global _caller, _coordinator
    if _coordinator is None:
        settings = get_settings()
        _caller = HttpCaller(timeout=settings.http_timeout_seconds)
        runner = StepRunner(
            ExecutionStore(),
            _caller,
            default_headers={"Content-Type": settings.default_content_type},
        )
        _coordinator = ExecutionCoordinator(WorkflowStore(), ExecutionStore(), runner)
    return _coordinator


async def shutdown_coordinator() -> None:
    """Let in-flight runs finish, then release the HTTP client."""

    global _caller, _coordinator
    if _coordinator is not None:
        await _coordinator.wait_idle()
    if _caller is not None:
        await _caller.aclose()
    _caller = None
    _coordinator = None


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    """Resolve the authenticated user id set by the upstream gateway."""

    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="missing user id"
        )
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid user id"
        ) from exc
