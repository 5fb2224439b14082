"""
Agent G task endpoints: execute a goal, delegate a single sub-task, and
download a task's output.
"""

from enum import Enum
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.agents.orchestrator.models import AgentName, AggregatedResult, TaskPlan
from app.agents.orchestrator.service import AgentService
from app.api.deps import (
    get_agent_service,
    get_agent_store,
    get_current_user_id,
    verify_delegate_access,
)
from app.core.errors import DelegationError
from app.core.observability import capture_exception
from app.services.export import render_markdown, render_zip_package
from app.services.store import AgentStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/agent", tags=["agent"])


class ExecuteRequest(BaseModel):
    """Goal to plan and execute."""
    goal: str = Field(..., min_length=3, max_length=3000)
    advanced_mode: bool = False
    related_task_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "goal": "Launch my bakery: business plan and 5 Instagram posts",
                "advanced_mode": False,
            }
        }


class ExecuteResponse(BaseModel):
    task_id: str
    status: str
    demo_mode: bool = False
    plan: TaskPlan
    results: Optional[AggregatedResult] = None


class DelegateRequest(BaseModel):
    agent_name: AgentName
    action: str = Field(..., min_length=2)
    input: dict[str, Any] = {}
    demo_mode: bool = False


class DelegateResponse(BaseModel):
    output: dict[str, Any]


class OutputFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"
    ZIP = "zip"


@router.post("/execute", response_model=ExecuteResponse)
async def execute(
    request: ExecuteRequest,
    user_id: str = Depends(get_current_user_id),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    service: AgentService = Depends(get_agent_service),
) -> ExecuteResponse:
    """
    Plan a goal, delegate its sub-tasks and aggregate the results.

    Completed and partial tasks trigger the voice callback (subject to the
    user's preferences) and a chat notice to linked chats.
    """
    demo_mode = authorization is None
    logger.info(
        "Execute request received",
        user_id=user_id,
        goal_length=len(request.goal),
        demo_mode=demo_mode,
    )

    try:
        run = await service.run_goal(
            request.goal,
            user_id,
            auth_header=authorization,
            demo_mode=demo_mode,
            advanced_mode=request.advanced_mode,
            related_task_id=request.related_task_id,
        )
    except Exception as e:
        logger.error("Execute request failed", user_id=user_id, error=str(e))
        capture_exception(e, {"user_id": user_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution failed",
        )

    task = run.task
    return ExecuteResponse(
        task_id=task.id,
        status=task.status,
        demo_mode=demo_mode,
        plan=task.plan,
        results=task.results,
    )


@router.post(
    "/delegate",
    response_model=DelegateResponse,
    dependencies=[Depends(verify_delegate_access)],
)
async def delegate(
    request: DelegateRequest,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    service: AgentService = Depends(get_agent_service),
):
    """
    Internal: delegate one sub-task to its domain agent.

    Auth: a forwarded Authorization header, or x-agent-g-secret.
    """
    try:
        output = await service.delegate(
            request.agent_name,
            request.action,
            request.input,
            auth_header=authorization,
            demo_mode=request.demo_mode,
        )
    except DelegationError as e:
        logger.warning(
            "Delegation failed",
            agent=request.agent_name.value,
            action=request.action,
            error=str(e),
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "error": "Sub-agent delegation failed",
                "detail": str(e),
                "agent": request.agent_name.value,
                "upstream_status": e.status_code,
                "retryable": e.retryable,
            },
        )

    return DelegateResponse(output=output)


@router.get("/output")
async def task_output(
    task_id: str = Query(..., min_length=1),
    format: OutputFormat = Query(OutputFormat.JSON),
    user_id: str = Depends(get_current_user_id),
    store: AgentStore = Depends(get_agent_store),
):
    """Download a finished task's output as JSON, markdown or a ZIP package."""
    task = await store.get_task(task_id)
    if task is None or task.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    if task.results is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task output not ready")

    if format == OutputFormat.MARKDOWN:
        return Response(
            content=render_markdown(task.results),
            media_type="text/markdown; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="agent-g-{task.id}.md"'},
        )

    if format == OutputFormat.ZIP:
        return Response(
            content=render_zip_package(task.goal, task.results),
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="agent-g-{task.id}.zip"'},
        )

    return {
        "task_id": task.id,
        "goal": task.goal,
        "status": task.status,
        "results": task.results.model_dump(mode="json"),
    }
