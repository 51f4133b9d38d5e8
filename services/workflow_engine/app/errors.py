"""Errors raised by the workflow engine."""

from __future__ import annotations


class WorkflowEngineError(Exception):
    """Base class for workflow engine errors."""


class WorkflowNotAccessible(WorkflowEngineError):
    """Workflow is missing, owned by another user or inactive."""

    def __init__(self, workflow_id: int) -> None:
        super().__init__(f"Workflow {workflow_id} not found or not accessible")
        self.workflow_id = workflow_id


class ExecutionNotFound(WorkflowEngineError):
    """Execution is missing or belongs to another user's workflow."""

    def __init__(self, execution_id: int) -> None:
        super().__init__(f"Execution {execution_id} not found")
        self.execution_id = execution_id


class StepNotFound(WorkflowEngineError):
    """Step is missing or belongs to another user's workflow."""

    def __init__(self, step_id: int) -> None:
        super().__init__(f"Step {step_id} not found")
        self.step_id = step_id


class StepListUnavailable(WorkflowEngineError):
    """Step definitions could not be loaded for a running execution."""


class StepTransportFailure(WorkflowEngineError):
    """Outbound HTTP call of a step did not produce a response."""
