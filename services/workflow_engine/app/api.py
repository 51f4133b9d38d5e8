"""API endpoints for workflow definitions and executions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from . import deps, schemas
from .engine import ExecutionCoordinator
from .errors import ExecutionNotFound, StepNotFound, WorkflowNotAccessible
from .store import ExecutionStore, WorkflowStore

router = APIRouter()


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post(
    "/workflows",
    response_model=schemas.WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_workflow(
    data: schemas.WorkflowCreate,
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> schemas.WorkflowResponse:
    workflow = await store.create_workflow(user_id, data)
    return schemas.WorkflowResponse.model_validate(workflow)


@router.get("/workflows", response_model=list[schemas.WorkflowResponse])
async def list_workflows(
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> list[schemas.WorkflowResponse]:
    workflows = await store.list_workflows(user_id)
    return [schemas.WorkflowResponse.model_validate(w) for w in workflows]


@router.patch("/workflows/{workflow_id}", response_model=schemas.WorkflowResponse)
async def update_workflow(
    workflow_id: int,
    data: schemas.WorkflowUpdate,
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> schemas.WorkflowResponse:
    try:
        workflow = await store.update_workflow(workflow_id, user_id, data)
    except WorkflowNotAccessible as exc:
        raise _not_found(exc) from exc
    return schemas.WorkflowResponse.model_validate(workflow)


@router.delete("/workflows/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> Response:
    try:
        await store.delete_workflow(workflow_id, user_id)
    except WorkflowNotAccessible as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/workflows/{workflow_id}/steps",
    response_model=schemas.WorkflowStepResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_step(
    workflow_id: int,
    data: schemas.WorkflowStepCreate,
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> schemas.WorkflowStepResponse:
    try:
        step = await store.create_step(workflow_id, user_id, data)
    except WorkflowNotAccessible as exc:
        raise _not_found(exc) from exc
    return schemas.WorkflowStepResponse.model_validate(step)


@router.get(
    "/workflows/{workflow_id}/steps",
    response_model=list[schemas.WorkflowStepResponse],
)
async def list_steps(
    workflow_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> list[schemas.WorkflowStepResponse]:
    try:
        steps = await store.list_owned_steps(workflow_id, user_id)
    except WorkflowNotAccessible as exc:
        raise _not_found(exc) from exc
    return [schemas.WorkflowStepResponse.model_validate(s) for s in steps]


@router.patch("/steps/{step_id}", response_model=schemas.WorkflowStepResponse)
async def update_step(
    step_id: int,
    data: schemas.WorkflowStepUpdate,
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> schemas.WorkflowStepResponse:
    try:
        step = await store.update_step(step_id, user_id, data)
    except StepNotFound as exc:
        raise _not_found(exc) from exc
    return schemas.WorkflowStepResponse.model_validate(step)


@router.delete("/steps/{step_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_step(
    step_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    store: WorkflowStore = Depends(deps.get_workflow_store),
) -> Response:
    try:
        await store.delete_step(step_id, user_id)
    except StepNotFound as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/workflows/{workflow_id}/executions",
    response_model=schemas.WorkflowExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_workflow(
    workflow_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    coordinator: ExecutionCoordinator = Depends(deps.get_coordinator),
) -> schemas.WorkflowExecutionResponse:
    try:
        execution = await coordinator.execute(workflow_id, user_id)
    except WorkflowNotAccessible as exc:
        raise _not_found(exc) from exc
    return schemas.WorkflowExecutionResponse.model_validate(execution)


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=list[schemas.WorkflowExecutionResponse],
)
async def list_executions(
    workflow_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    store: ExecutionStore = Depends(deps.get_execution_store),
) -> list[schemas.WorkflowExecutionResponse]:
    try:
        executions = await store.list_executions(workflow_id, user_id)
    except WorkflowNotAccessible as exc:
        raise _not_found(exc) from exc
    return [schemas.WorkflowExecutionResponse.model_validate(e) for e in executions]


@router.get(
    "/executions/{execution_id}", response_model=schemas.ExecutionDetailResponse
)
async def get_execution(
    execution_id: int,
    user_id: int = Depends(deps.get_current_user_id),
    store: ExecutionStore = Depends(deps.get_execution_store),
) -> schemas.ExecutionDetailResponse:
    try:
        execution, step_executions = await store.get_execution_details(
            execution_id, user_id
        )
    except ExecutionNotFound as exc:
        raise _not_found(exc) from exc
    return schemas.ExecutionDetailResponse(
        execution=schemas.WorkflowExecutionResponse.model_validate(execution),
        step_executions=[
            schemas.StepExecutionResponse.model_validate(s) for s in step_executions
        ],
    )
