"""Workflow execution: launching runs and driving them to a terminal status."""

from __future__ import annotations

import asyncio
import time

from prometheus_client import Counter

from src.common.logging import get_logger
from src.common.metrics import BACKGROUND_TASKS, JOB_DURATION

from . import models
from .errors import StepListUnavailable, WorkflowNotAccessible
from .runner import StepRunner
from .store import ExecutionStore, WorkflowStore

logger = get_logger(__name__)

SERVICE_NAME = "workflow_engine"

EXECUTIONS_FINISHED = Counter(
    "workflow_executions_total",
    "Workflow executions that reached a terminal status",
    ["service", "status"],
)


class ExecutionCoordinator:
    """Starts workflow executions and runs them in background tasks.

    :meth:`execute` validates access, persists a ``pending`` execution and
    returns it right away. The steps run later in :meth:`run`, one at a time,
    inside a task whose handle the coordinator keeps until it finishes.
    Every failure after that point ends up on the execution record; nothing
    is raised to the original caller.
    """

    def __init__(
        self,
        workflows: WorkflowStore,
        executions: ExecutionStore,
        runner: StepRunner,
    ) -> None:
        self.workflows = workflows
        self.executions = executions
        self.runner = runner
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def execute(self, workflow_id: int, user_id: int) -> models.WorkflowExecution:
        workflow = await self.workflows.find_workflow(workflow_id, user_id)
        if workflow is None or not workflow.is_active:
            raise WorkflowNotAccessible(workflow_id)
        execution = await self.executions.create_execution(workflow_id)
        logger.info(
            "execution.queued",
            execution_id=execution.id,
            workflow_id=workflow_id,
            user_id=user_id,
        )
        self._launch(execution.id, workflow_id)
        return execution

    def _launch(self, execution_id: int, workflow_id: int) -> None:
        task = asyncio.create_task(
            self.run(execution_id, workflow_id),
            name=f"workflow-execution-{execution_id}",
        )
        self._tasks.add(task)
        BACKGROUND_TASKS.labels(SERVICE_NAME, "execution").inc()
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        BACKGROUND_TASKS.labels(SERVICE_NAME, "execution").dec()
        if task.cancelled():
            logger.warning("execution.cancelled", task=task.get_name())
        elif task.exception() is not None:
            logger.error(
                "execution.task_error",
                task=task.get_name(),
                error=repr(task.exception()),
            )

    async def wait_idle(self) -> None:
        """Wait until every launched run has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self, execution_id: int, workflow_id: int) -> None:
        """Drive one execution to ``completed`` or ``failed``."""

        start = time.monotonic()
        log = logger.bind(execution_id=execution_id, workflow_id=workflow_id)
        try:
            status = await self._run_steps(execution_id, workflow_id, log)
        except Exception as exc:
            log.exception("execution.crashed")
            status = models.ExecutionStatus.FAILED
            try:
                await self._finish(
                    execution_id, status, f"Unexpected error during execution: {exc}"
                )
            except Exception:
                log.exception("execution.finalize_failed")
        EXECUTIONS_FINISHED.labels(SERVICE_NAME, status.value).inc()
        JOB_DURATION.labels(SERVICE_NAME, "workflow_execution").observe(
            time.monotonic() - start
        )

    async def _run_steps(
        self, execution_id: int, workflow_id: int, log
    ) -> models.ExecutionStatus:
        await self.executions.update_execution(
            execution_id, status=models.ExecutionStatus.RUNNING
        )
        log.info("execution.started")

        try:
            steps = await self._load_steps(workflow_id)
        except StepListUnavailable as exc:
            log.error("execution.failed", error=str(exc))
            await self._finish(execution_id, models.ExecutionStatus.FAILED, str(exc))
            return models.ExecutionStatus.FAILED

        for step in steps:
            step_execution = await self.runner.run_step(step, execution_id)
            if step_execution.status == models.ExecutionStatus.FAILED:
                log.warning(
                    "execution.failed",
                    step_id=step.id,
                    error=step_execution.error_message,
                )
                await self._finish(
                    execution_id,
                    models.ExecutionStatus.FAILED,
                    step_execution.error_message,
                )
                return models.ExecutionStatus.FAILED

        await self._finish(execution_id, models.ExecutionStatus.COMPLETED, None)
        log.info("execution.completed", steps=len(steps))
        return models.ExecutionStatus.COMPLETED

    async def _load_steps(self, workflow_id: int) -> list[models.WorkflowStep]:
        try:
            return await self.workflows.list_steps(workflow_id)
        except Exception as exc:
            raise StepListUnavailable(
                f"Could not load steps for workflow {workflow_id}: {exc}"
            ) from exc

    async def _finish(
        self,
        execution_id: int,
        status: models.ExecutionStatus,
        error_message: str | None,
    ) -> None:
        await self.executions.update_execution(
            execution_id,
            status=status,
            error_message=error_message,
            completed_at=models.utcnow(),
        )
