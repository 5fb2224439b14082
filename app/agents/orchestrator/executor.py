"""
Plan executor.
Delegates each sub-task of a plan to its domain agent and aggregates the
outcomes into a single task status. A failing sub-task never aborts the plan.
"""

import asyncio
import uuid
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from app.agents.orchestrator.models import (
    ExecutionResult,
    SubtaskResult,
    SubtaskSpec,
    SubtaskState,
    TaskPlan,
    aggregate_status,
)
from app.agents.orchestrator.router import (
    DelegateContext,
    DelegateRouter,
    DelegateTarget,
    delegate_router,
)
from app.core.errors import DelegationError, RemoteCallError
from app.services.remote import RemoteCaller

logger = structlog.get_logger(__name__)

INTERNAL_SECRET_HEADER = "x-agent-g-secret"
DEMO_MODE_HEADER = "x-agent-g-demo"


class DelegateOptions(BaseModel):
    """How the executor reaches domain agents."""
    origin: str
    auth_header: Optional[str] = None
    internal_secret: Optional[str] = None
    demo_mode: bool = False
    parallel: bool = False


def build_delegate_headers(options: DelegateOptions) -> dict[str, str]:
    """Headers forwarded with every delegate call."""
    headers = {"Content-Type": "application/json"}
    if options.auth_header:
        headers["authorization"] = options.auth_header
    if options.internal_secret:
        headers[INTERNAL_SECRET_HEADER] = options.internal_secret
    if options.demo_mode:
        headers[DEMO_MODE_HEADER] = "true"
    return headers


async def _call_target(target: DelegateTarget, ctx: DelegateContext) -> dict[str, Any]:
    try:
        response = await ctx.caller.call(
            target.method,
            ctx.url(target.endpoint),
            headers=ctx.headers,
            body=target.body,
        )
    except RemoteCallError as e:
        raise DelegationError(str(e), retryable=True) from e

    if not response.ok:
        raise DelegationError(
            f"Delegation to {target.endpoint} failed ({response.status_code})",
            status_code=response.status_code,
            retryable=response.status_code >= 500,
        )

    if not isinstance(response.body, dict):
        raise DelegationError(
            f"Malformed response body from {target.endpoint}",
            status_code=response.status_code,
        )

    data = response.body.get("data", response.body)
    if "output" in response.body and isinstance(response.body["output"], dict):
        data = response.body["output"]

    return {"source": target.source, "data": data}


async def delegate_subtask(
    spec: SubtaskSpec,
    ctx: DelegateContext,
    router: Optional[DelegateRouter] = None,
) -> dict[str, Any]:
    """
    Perform one sub-task against its domain agent.

    Tries the target's fallback call when the primary call fails.

    Returns:
        The agent's output payload

    Raises:
        DelegationError: when neither the primary nor the fallback call succeeds
    """
    router = router or delegate_router

    try:
        target = await router.resolve(spec, ctx)
    except KeyError as e:
        raise DelegationError(str(e)) from e

    try:
        return await _call_target(target, ctx)
    except DelegationError as e:
        if target.fallback is None:
            raise
        logger.info(
            "Primary delegate call failed, using fallback",
            agent=spec.agent.value,
            endpoint=target.endpoint,
            fallback=target.fallback.endpoint,
            error=str(e),
        )
        return await _call_target(target.fallback, ctx)


class PlanExecutor:
    """
    Runs a TaskPlan against the domain agents.

    Sub-tasks run strictly in plan order, each awaited before the next.
    With `DelegateOptions.parallel` they are fanned out concurrently and
    results are still reported in plan order.
    """

    def __init__(
        self,
        caller: RemoteCaller,
        router: Optional[DelegateRouter] = None,
    ):
        self.caller = caller
        self.router = router or delegate_router

    async def execute(self, plan: TaskPlan, options: DelegateOptions) -> ExecutionResult:
        """
        Execute every sub-task of a plan.

        Args:
            plan: Plan produced by the planner
            options: Origin and credentials for delegate calls

        Returns:
            ExecutionResult with aggregate status and per-sub-task results
        """
        ctx = DelegateContext(
            caller=self.caller,
            origin=options.origin,
            headers=build_delegate_headers(options),
        )

        logger.info(
            "Executing plan",
            task_type=plan.task_type.value,
            subtask_count=len(plan.sub_tasks),
            parallel=options.parallel,
            demo_mode=options.demo_mode,
        )

        if options.parallel:
            results = list(
                await asyncio.gather(*(self._run_subtask(spec, ctx) for spec in plan.sub_tasks))
            )
        else:
            results = []
            for spec in plan.sub_tasks:
                results.append(await self._run_subtask(spec, ctx))

        status = aggregate_status(results)
        logger.info(
            "Plan executed",
            status=status.value,
            failed=[r.agent.value for r in results if r.status == SubtaskState.FAILED],
        )
        return ExecutionResult(status=status, subtasks=results)

    async def _run_subtask(self, spec: SubtaskSpec, ctx: DelegateContext) -> SubtaskResult:
        subtask_id = str(uuid.uuid4())
        try:
            output = await delegate_subtask(spec, ctx, self.router)
        except DelegationError as e:
            logger.warning(
                "Sub-task failed",
                agent=spec.agent.value,
                action=spec.action,
                error=str(e),
                retryable=e.retryable,
            )
            return SubtaskResult(
                id=subtask_id,
                agent=spec.agent,
                action=spec.action,
                status=SubtaskState.FAILED,
                input=spec.input,
                error=str(e),
                retryable=e.retryable,
            )

        return SubtaskResult(
            id=subtask_id,
            agent=spec.agent,
            action=spec.action,
            status=SubtaskState.COMPLETED,
            input=spec.input,
            output=output,
        )
