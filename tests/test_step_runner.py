import httpx
import pytest
from sqlalchemy import select

from services.workflow_engine.app import models
from services.workflow_engine.app.http_caller import HttpCaller
from services.workflow_engine.app.runner import StepRunner, build_request
from services.workflow_engine.app.store import ExecutionStore
from src.common import db


def _step(**kwargs) -> models.WorkflowStep:
    defaults = {
        "id": 1,
        "workflow_id": 1,
        "name": "call",
        "method": "GET",
        "url": "http://svc.test/a",
        "headers": None,
        "body": None,
        "step_order": 1,
    }
    defaults.update(kwargs)
    return models.WorkflowStep(**defaults)


def test_default_content_type_applied() -> None:
    headers, body = build_request(_step())
    assert headers == {"Content-Type": "application/json"}
    assert body is None


def test_step_headers_override_defaults() -> None:
    headers, _ = build_request(
        _step(headers={"content-type": "text/plain", "X-Trace": "abc"})
    )
    assert headers == {"content-type": "text/plain", "X-Trace": "abc"}


def test_step_headers_extend_defaults() -> None:
    headers, _ = build_request(_step(headers={"Authorization": "Bearer t"}))
    assert headers["Content-Type"] == "application/json"
    assert headers["Authorization"] == "Bearer t"


@pytest.mark.parametrize("method", ["GET", "DELETE"])
def test_body_dropped_for_methods_without_payload(method: str) -> None:
    _, body = build_request(_step(method=method, body='{"a": 1}'))
    assert body is None


@pytest.mark.parametrize("method", ["POST", "PUT", "PATCH"])
def test_body_kept_for_methods_with_payload(method: str) -> None:
    _, body = build_request(_step(method=method, body='{"a": 1}'))
    assert body == '{"a": 1}'


async def _execution_id(make_workflow) -> tuple[models.Workflow, int]:
    workflow = await make_workflow()
    execution = await ExecutionStore().create_execution(workflow.id)
    return workflow, execution.id


@pytest.mark.anyio
async def test_post_sends_body_and_headers(make_workflow, add_step) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, text='{"ok": true}')

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(
        workflow,
        "http://svc.test/items",
        method="POST",
        body='{"name": "x"}',
        headers={"X-Api-Key": "k"},
    )
    caller = HttpCaller(transport=httpx.MockTransport(handler))
    result = await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert seen[0].method == "POST"
    assert str(seen[0].url) == "http://svc.test/items"
    assert seen[0].content == b'{"name": "x"}'
    assert seen[0].headers["content-type"] == "application/json"
    assert seen[0].headers["x-api-key"] == "k"
    assert result.status == models.ExecutionStatus.COMPLETED
    assert result.response_status == 201
    assert result.response_body == '{"ok": true}'
    assert result.error_message is None
    assert result.completed_at is not None
    assert result.completed_at >= result.started_at


@pytest.mark.anyio
async def test_get_never_sends_configured_body(make_workflow, add_step) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="ok")

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(workflow, "http://svc.test/a", body='{"ignored": 1}')
    caller = HttpCaller(transport=httpx.MockTransport(handler))
    await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert seen[0].content == b""


@pytest.mark.anyio
@pytest.mark.parametrize("status_code", [404, 500])
async def test_error_status_is_a_completed_step(
    make_workflow, add_step, status_code: int
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text="{}")

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(workflow, "http://svc.test/b")
    caller = HttpCaller(transport=httpx.MockTransport(handler))
    result = await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert result.status == models.ExecutionStatus.COMPLETED
    assert result.response_status == status_code
    assert result.response_body == "{}"


@pytest.mark.anyio
async def test_transport_error_fails_step(make_workflow, add_step) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(workflow, "http://svc.test/down")
    caller = HttpCaller(transport=httpx.MockTransport(handler))
    result = await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert result.status == models.ExecutionStatus.FAILED
    assert "connection refused" in result.error_message
    assert result.response_status is None
    assert result.completed_at is not None

    async with db.get_session() as session:
        rows = (await session.scalars(select(models.StepExecution))).all()
    assert [r.id for r in rows] == [result.id]
    assert rows[0].status == "failed"


@pytest.mark.anyio
async def test_timeout_message_names_the_call(make_workflow, add_step) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(workflow, "http://svc.test/slow")
    caller = HttpCaller(timeout=5, transport=httpx.MockTransport(handler))
    result = await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert result.status == models.ExecutionStatus.FAILED
    assert result.error_message == "GET http://svc.test/slow timed out after 5s"


@pytest.mark.anyio
async def test_running_row_exists_during_call(make_workflow, add_step) -> None:
    statuses: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        async with db.get_session() as session:
            rows = (await session.scalars(select(models.StepExecution))).all()
        statuses.extend(r.status for r in rows)
        assert all(r.completed_at is None for r in rows)
        return httpx.Response(200)

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(workflow, "http://svc.test/a")
    caller = HttpCaller(transport=httpx.MockTransport(handler))
    await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert statuses == ["running"]


@pytest.mark.anyio
async def test_unencodable_header_fails_step(make_workflow, add_step) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(workflow, "http://svc.test/a")
    # Stored rows are not re-validated, so the runner must cope with them.
    step.headers = {"X-Name": "café"}
    caller = HttpCaller(transport=httpx.MockTransport(handler))
    result = await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert seen == []
    assert result.status == models.ExecutionStatus.FAILED
    assert result.error_message.startswith("GET http://svc.test/a")
    assert result.completed_at is not None

    async with db.get_session() as session:
        rows = (await session.scalars(select(models.StepExecution))).all()
    assert [(r.id, r.status) for r in rows] == [(result.id, "failed")]
    assert rows[0].completed_at is not None


@pytest.mark.anyio
async def test_unexpected_caller_error_fails_step(make_workflow, add_step) -> None:
    class BrokenCaller(HttpCaller):
        async def call(self, method, url, headers, body=None):
            raise RuntimeError("codec exploded")

    workflow, execution_id = await _execution_id(make_workflow)
    step = await add_step(workflow, "http://svc.test/a")
    caller = BrokenCaller()
    result = await StepRunner(ExecutionStore(), caller).run_step(step, execution_id)
    await caller.aclose()

    assert result.status == models.ExecutionStatus.FAILED
    assert "codec exploded" in result.error_message
    assert result.completed_at is not None
