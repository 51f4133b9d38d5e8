"""Execution of a single workflow step."""

from __future__ import annotations

import time
from typing import Mapping

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Histogram

from src.common.logging import get_logger

from . import models
from .errors import StepTransportFailure
from .http_caller import HttpCaller
from .store import ExecutionStore

logger = get_logger(__name__)

STEP_DURATION = Histogram(
    "workflow_step_duration_seconds",
    "Duration of outbound step calls in seconds",
    ["service", "method", "outcome"],
)

METHODS_WITH_BODY = frozenset({"POST", "PUT", "PATCH"})
DEFAULT_HEADERS: Mapping[str, str] = {"Content-Type": "application/json"}


def build_request(
    step: models.WorkflowStep,
    default_headers: Mapping[str, str] = DEFAULT_HEADERS,
) -> tuple[dict[str, str], str | None]:
    """Return the headers and body to send for ``step``.

    Step headers are laid over the defaults, so a step value wins on a key
    collision (names compare case-insensitively, as HTTP does). Only POST,
    PUT and PATCH carry the configured body.
    """

    headers = dict(default_headers)
    for name, value in (step.headers or {}).items():
        for existing in [k for k in headers if k.lower() == name.lower()]:
            del headers[existing]
        headers[name] = value
    body = step.body if step.method in METHODS_WITH_BODY else None
    return headers, body


class StepRunner:
    """Runs one step and records its outcome on a step execution row."""

    _tracer = trace.get_tracer(__name__)

    def __init__(
        self,
        store: ExecutionStore,
        caller: HttpCaller,
        default_headers: Mapping[str, str] = DEFAULT_HEADERS,
    ) -> None:
        self.store = store
        self.caller = caller
        self.default_headers = dict(default_headers)

    async def run_step(
        self, step: models.WorkflowStep, execution_id: int
    ) -> models.StepExecution:
        # The running row exists before the call so an interrupted call still
        # leaves a trace of the attempt.
        step_execution = await self.store.create_step_execution(execution_id, step.id)
        log = logger.bind(
            execution_id=execution_id,
            step_id=step.id,
            step_execution_id=step_execution.id,
        )
        start = time.perf_counter()
        with self._tracer.start_as_current_span("workflow.step") as span:
            span.set_attribute("http.method", step.method)
            span.set_attribute("http.url", step.url)
            span.set_attribute("workflow.execution_id", execution_id)
            span.set_attribute("workflow.step_id", step.id)
            try:
                headers, body = build_request(step, self.default_headers)
                response = await self.caller.call(step.method, step.url, headers, body)
            except StepTransportFailure as exc:
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                log.warning("step.failed", error=str(exc))
                return await self._fail(step_execution.id, step.method, start, str(exc))
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                log.exception("step.failed")
                message = f"{step.method} {step.url} failed unexpectedly: {exc}"
                return await self._fail(step_execution.id, step.method, start, message)
            span.set_attribute("http.status_code", response.status_code)
        STEP_DURATION.labels("workflow_engine", step.method, "completed").observe(
            time.perf_counter() - start
        )
        log.info("step.completed", response_status=response.status_code)
        return await self.store.update_step_execution(
            step_execution.id,
            status=models.ExecutionStatus.COMPLETED,
            response_status=response.status_code,
            response_body=response.text,
            completed_at=models.utcnow(),
        )

    async def _fail(
        self, step_execution_id: int, method: str, start: float, message: str
    ) -> models.StepExecution:
        STEP_DURATION.labels("workflow_engine", method, "failed").observe(
            time.perf_counter() - start
        )
        return await self.store.update_step_execution(
            step_execution_id,
            status=models.ExecutionStatus.FAILED,
            error_message=message,
            completed_at=models.utcnow(),
        )
