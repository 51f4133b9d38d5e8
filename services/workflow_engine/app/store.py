"""Persistence of workflow definitions and execution records."""

from __future__ import annotations

import enum
from typing import Any, Sequence

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.db import get_session

from . import models, schemas
from .errors import ExecutionNotFound, StepNotFound, WorkflowNotAccessible

_EXECUTION_FIELDS = frozenset({"status", "completed_at", "error_message"})
_STEP_EXECUTION_FIELDS = frozenset(
    {"status", "response_status", "response_body", "error_message", "completed_at"}
)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


def _check_fields(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"unsupported fields: {', '.join(sorted(unknown))}")


class WorkflowStore:
    """Owner-scoped access to workflows and their step definitions."""

    async def find_workflow(
        self, workflow_id: int, user_id: int
    ) -> models.Workflow | None:
        """Return the workflow when it exists and belongs to ``user_id``."""

        async with get_session() as session:
            return await session.scalar(
                select(models.Workflow).where(
                    models.Workflow.id == workflow_id,
                    models.Workflow.user_id == user_id,
                )
            )

    async def list_steps(self, workflow_id: int) -> list[models.WorkflowStep]:
        """Steps of a workflow in execution order."""

        async with get_session() as session:
            result = await session.scalars(
                select(models.WorkflowStep)
                .where(models.WorkflowStep.workflow_id == workflow_id)
                .order_by(models.WorkflowStep.step_order, models.WorkflowStep.id)
            )
            return list(result)

    async def list_workflows(self, user_id: int) -> list[models.Workflow]:
        async with get_session() as session:
            result = await session.scalars(
                select(models.Workflow)
                .where(models.Workflow.user_id == user_id)
                .order_by(desc(models.Workflow.created_at), desc(models.Workflow.id))
            )
            return list(result)

    async def create_workflow(
        self, user_id: int, data: schemas.WorkflowCreate
    ) -> models.Workflow:
        async with get_session() as session:
            workflow = models.Workflow(user_id=user_id, **data.model_dump())
            session.add(workflow)
            await session.commit()
            await session.refresh(workflow)
            return workflow

    async def update_workflow(
        self, workflow_id: int, user_id: int, data: schemas.WorkflowUpdate
    ) -> models.Workflow:
        async with get_session() as session:
            workflow = await self._owned_workflow(session, workflow_id, user_id)
            for field, value in data.model_dump(exclude_unset=True).items():
                if field in ("name", "is_active") and value is None:
                    continue
                setattr(workflow, field, value)
            await session.commit()
            await session.refresh(workflow)
            return workflow

    async def delete_workflow(self, workflow_id: int, user_id: int) -> None:
        async with get_session() as session:
            workflow = await self._owned_workflow(session, workflow_id, user_id)
            await session.delete(workflow)
            await session.commit()

    async def list_owned_steps(
        self, workflow_id: int, user_id: int
    ) -> list[models.WorkflowStep]:
        if await self.find_workflow(workflow_id, user_id) is None:
            raise WorkflowNotAccessible(workflow_id)
        return await self.list_steps(workflow_id)

    async def create_step(
        self, workflow_id: int, user_id: int, data: schemas.WorkflowStepCreate
    ) -> models.WorkflowStep:
        async with get_session() as session:
            await self._owned_workflow(session, workflow_id, user_id)
            step = models.WorkflowStep(
                workflow_id=workflow_id, **data.model_dump(mode="json")
            )
            session.add(step)
            await session.commit()
            await session.refresh(step)
            return step

    async def update_step(
        self, step_id: int, user_id: int, data: schemas.WorkflowStepUpdate
    ) -> models.WorkflowStep:
        async with get_session() as session:
            step = await self._owned_step(session, step_id, user_id)
            for field, value in data.model_dump(exclude_unset=True, mode="json").items():
                if field in ("name", "method", "url", "step_order") and value is None:
                    continue
                setattr(step, field, value)
            await session.commit()
            await session.refresh(step)
            return step

    async def delete_step(self, step_id: int, user_id: int) -> None:
        async with get_session() as session:
            step = await self._owned_step(session, step_id, user_id)
            await session.delete(step)
            await session.commit()

    @staticmethod
    async def _owned_workflow(
        session: AsyncSession, workflow_id: int, user_id: int
    ) -> models.Workflow:
        workflow = await session.scalar(
            select(models.Workflow).where(
                models.Workflow.id == workflow_id,
                models.Workflow.user_id == user_id,
            )
        )
        if workflow is None:
            raise WorkflowNotAccessible(workflow_id)
        return workflow

    @staticmethod
    async def _owned_step(
        session: AsyncSession, step_id: int, user_id: int
    ) -> models.WorkflowStep:
        step = await session.scalar(
            select(models.WorkflowStep)
            .join(models.Workflow, models.WorkflowStep.workflow_id == models.Workflow.id)
            .where(
                models.WorkflowStep.id == step_id,
                models.Workflow.user_id == user_id,
            )
        )
        if step is None:
            raise StepNotFound(step_id)
        return step


class ExecutionStore:
    """Execution and step-execution records.

    Every write opens its own session and touches exactly one row, so
    concurrent runs never contend on anything but their own records.
    """

    async def create_execution(self, workflow_id: int) -> models.WorkflowExecution:
        async with get_session() as session:
            now = models.utcnow()
            execution = models.WorkflowExecution(
                workflow_id=workflow_id,
                status=models.ExecutionStatus.PENDING.value,
                started_at=now,
                completed_at=None,
                error_message=None,
                created_at=now,
            )
            session.add(execution)
            await session.commit()
            return execution

    async def update_execution(
        self, execution_id: int, **fields: Any
    ) -> models.WorkflowExecution:
        _check_fields(fields, _EXECUTION_FIELDS)
        async with get_session() as session:
            execution = await session.get(models.WorkflowExecution, execution_id)
            if execution is None:
                raise ExecutionNotFound(execution_id)
            for field, value in fields.items():
                setattr(execution, field, _plain(value))
            await session.commit()
            return execution

    async def create_step_execution(
        self, execution_id: int, step_id: int
    ) -> models.StepExecution:
        async with get_session() as session:
            now = models.utcnow()
            step_execution = models.StepExecution(
                execution_id=execution_id,
                step_id=step_id,
                status=models.ExecutionStatus.RUNNING.value,
                response_status=None,
                response_body=None,
                error_message=None,
                started_at=now,
                completed_at=None,
                created_at=now,
            )
            session.add(step_execution)
            await session.commit()
            return step_execution

    async def update_step_execution(
        self, step_execution_id: int, **fields: Any
    ) -> models.StepExecution:
        _check_fields(fields, _STEP_EXECUTION_FIELDS)
        async with get_session() as session:
            step_execution = await session.get(models.StepExecution, step_execution_id)
            if step_execution is None:
                raise LookupError(f"step execution {step_execution_id} not found")
            for field, value in fields.items():
                setattr(step_execution, field, _plain(value))
            await session.commit()
            return step_execution

    async def list_executions(
        self, workflow_id: int, user_id: int
    ) -> list[models.WorkflowExecution]:
        """Execution history of an owned workflow, newest first."""

        async with get_session() as session:
            owner = await session.scalar(
                select(models.Workflow.id).where(
                    models.Workflow.id == workflow_id,
                    models.Workflow.user_id == user_id,
                )
            )
            if owner is None:
                raise WorkflowNotAccessible(workflow_id)
            result = await session.scalars(
                select(models.WorkflowExecution)
                .where(models.WorkflowExecution.workflow_id == workflow_id)
                .order_by(
                    desc(models.WorkflowExecution.started_at),
                    desc(models.WorkflowExecution.id),
                )
            )
            return list(result)

    async def get_execution_details(
        self, execution_id: int, user_id: int
    ) -> tuple[models.WorkflowExecution, Sequence[models.StepExecution]]:
        """Execution with its step executions ordered like the steps themselves."""

        async with get_session() as session:
            execution = await session.scalar(
                select(models.WorkflowExecution)
                .join(
                    models.Workflow,
                    models.WorkflowExecution.workflow_id == models.Workflow.id,
                )
                .where(
                    models.WorkflowExecution.id == execution_id,
                    models.Workflow.user_id == user_id,
                )
            )
            if execution is None:
                raise ExecutionNotFound(execution_id)
            result = await session.scalars(
                select(models.StepExecution)
                .join(
                    models.WorkflowStep,
                    models.StepExecution.step_id == models.WorkflowStep.id,
                )
                .where(models.StepExecution.execution_id == execution_id)
                .order_by(models.WorkflowStep.step_order, models.WorkflowStep.id)
            )
            return execution, list(result)
