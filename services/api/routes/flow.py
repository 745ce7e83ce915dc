"""Flow execution API routes."""

import json
import logging
from functools import lru_cache
from fastapi import APIRouter, Depends, HTTPException, Request, status
from redis.exceptions import RedisError
from services.api.domain.models import ErrorResponse, PluginListResponse, ProjectExecutionsResponse
from services.api.domain.validation import FlowPayloadError, parse_flow_payload
from services.api.infra.redis_store import ExecutionStore
from services.executor.engine.executor import FlowExecutor
from shared.types import FlowResult


router = APIRouter()


@lru_cache
def get_executor() -> FlowExecutor:
    return FlowExecutor()


@lru_cache
def get_execution_store() -> ExecutionStore:
    return ExecutionStore()


@router.post(
    "/flows/execute",
    response_model=FlowResult,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def execute_flow(
    request: Request,
    executor: FlowExecutor = Depends(get_executor),
    store: ExecutionStore = Depends(get_execution_store),
):
    try:
        payload = json.loads(await request.body() or b"null")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be valid JSON")

    try:
        flow = parse_flow_payload(payload)
    except FlowPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    result = await executor.execute_flow(flow)

    try:
        store.save_result(result)
    except RedisError as e:
        logging.error("Failed to persist execution result", extra={
            "execution_id": result.execution_id,
            "error": str(e),
        })
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution store unavailable",
        )

    return result


@router.get("/flows/executions/{execution_id}", response_model=FlowResult)
async def get_execution(execution_id: str, store: ExecutionStore = Depends(get_execution_store)):
    try:
        result = store.get_result(execution_id)
    except RedisError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution store unavailable",
        )
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND,
                            detail=f"Execution {execution_id} not found")
    return result


@router.get("/flows/projects/{project_id}/executions", response_model=ProjectExecutionsResponse)
async def list_project_executions(project_id: str, store: ExecutionStore = Depends(get_execution_store)):
    try:
        execution_ids = store.list_executions(project_id)
    except RedisError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution store unavailable",
        )
    return ProjectExecutionsResponse(project_id=project_id, execution_ids=execution_ids)


@router.get("/flows/plugins", response_model=PluginListResponse)
async def list_plugins(executor: FlowExecutor = Depends(get_executor)):
    return PluginListResponse(plugins=executor.registry.describe())
