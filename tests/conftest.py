from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

import pytest

from services.workflow_engine.app import models, schemas
from services.workflow_engine.app.store import WorkflowStore
from src.common import db
from src.common.settings import Settings

MakeWorkflow = Callable[..., Awaitable[models.Workflow]]
AddStep = Callable[..., Awaitable[models.WorkflowStep]]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def database(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, anyio_backend: str
) -> AsyncIterator[None]:
    # A file database gives every session its own connection; background runs
    # write concurrently with the test body.
    dsn = f"sqlite+aiosqlite:///{tmp_path / 'workflow_engine.db'}"

    class TestSettings(Settings):
        postgres_dsn = dsn

    from src.common import settings as common_settings

    monkeypatch.setattr(common_settings, "settings", TestSettings())
    monkeypatch.setattr(db, "_engine", None)
    monkeypatch.setattr(db, "_sessionmaker", None)

    await db.create_schema()
    yield
    await db.dispose_engine()


@pytest.fixture
def make_workflow(database: None) -> MakeWorkflow:
    async def _make(user_id: int = 1, *, is_active: bool = True, name: str = "wf"):
        return await WorkflowStore().create_workflow(
            user_id, schemas.WorkflowCreate(name=name, is_active=is_active)
        )

    return _make


@pytest.fixture
def add_step(database: None) -> AddStep:
    async def _add(
        workflow: models.Workflow,
        url: str,
        *,
        method: str = "GET",
        step_order: int = 1,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        name: str | None = None,
    ):
        return await WorkflowStore().create_step(
            workflow.id,
            workflow.user_id,
            schemas.WorkflowStepCreate(
                name=name or f"{method} {url}",
                method=method,
                url=url,
                headers=headers,
                body=body,
                step_order=step_order,
            ),
        )

    return _add
