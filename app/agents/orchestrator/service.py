"""
Agent G task service.
Runs a goal end to end: plan, persist, execute, aggregate, store results and
notify the user by voice callback and chat.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from app.agents.orchestrator.aggregator import aggregate_results
from app.agents.orchestrator.executor import (
    DelegateOptions,
    PlanExecutor,
    build_delegate_headers,
    delegate_subtask,
)
from app.agents.orchestrator.models import AgentName, SubtaskSpec, TaskStatus
from app.agents.orchestrator.planner import build_task_plan, make_task_id, plan_summary
from app.agents.orchestrator.router import DelegateContext, DelegateRouter, delegate_router
from app.channels.composer import dashboard_url
from app.channels.telegram import TelegramClient, notify_task_completion
from app.core.config import settings
from app.core.errors import StoreError
from app.core.observability import capture_exception, set_task_context, trace_span
from app.services.remote import RemoteCaller
from app.services.store import AgentStore, TaskRecord
from app.voice.callback import CallbackDispatcher
from app.voice.models import CallbackOutcome, CallbackRequest

logger = structlog.get_logger(__name__)

NOTIFY_STATUSES = (TaskStatus.COMPLETED, TaskStatus.PARTIAL)


class TaskRun(BaseModel):
    """A finished goal run and what happened after it."""
    task: TaskRecord
    callback: Optional[CallbackOutcome] = None
    chat_notified: bool = False


class AgentService:
    """
    Orchestrates one goal at a time.

    Collaborators are injected so tests can swap the remote caller, store,
    callback dispatcher and chat client for fakes.
    """

    def __init__(
        self,
        store: AgentStore,
        caller: RemoteCaller,
        dispatcher: Optional[CallbackDispatcher] = None,
        telegram: Optional[TelegramClient] = None,
        router: Optional[DelegateRouter] = None,
        origin: Optional[str] = None,
        internal_secret: Optional[str] = None,
    ):
        self.store = store
        self.caller = caller
        self.dispatcher = dispatcher
        self.telegram = telegram
        self.router = router or delegate_router
        self.executor = PlanExecutor(caller, self.router)
        self.origin = (origin or settings.public_app_url).rstrip("/")
        self.internal_secret = (
            internal_secret if internal_secret is not None else settings.agent_g_internal_secret
        ) or None

    async def run_goal(
        self,
        goal: str,
        user_id: str,
        auth_header: Optional[str] = None,
        demo_mode: bool = False,
        advanced_mode: bool = False,
        related_task_id: Optional[str] = None,
        locale: Optional[str] = None,
        notify: bool = True,
    ) -> TaskRun:
        """
        Plan and execute a goal, then store and announce the result.

        Args:
            goal: Free-text user goal
            user_id: Owner of the task
            auth_header: Caller's Authorization header, forwarded to agents
            demo_mode: Mark delegate calls as demo traffic; no callback or notice
            advanced_mode: Run independent sub-tasks concurrently
            related_task_id: Earlier task this one follows up on
            locale: Locale for dashboard links
            notify: Send the voice callback and chat notice when the task succeeds

        Returns:
            TaskRun with the stored task record
        """
        plan = build_task_plan(goal)
        task_id = make_task_id()
        set_task_context(task_id, user_id, plan.task_type.value)
        logger.info("Agent task planned", user_id=user_id, **plan_summary(plan))

        task = TaskRecord(
            id=task_id,
            user_id=user_id,
            goal=goal,
            plan=plan,
            related_task_id=related_task_id,
            demo_mode=demo_mode,
        )
        await self.store.save_task(task)

        options = DelegateOptions(
            origin=self.origin,
            auth_header=auth_header,
            internal_secret=self.internal_secret,
            demo_mode=demo_mode,
            parallel=advanced_mode,
        )
        with trace_span("agent_g.execute", {"task_type": plan.task_type.value}):
            executed = await self.executor.execute(plan, options)

        aggregated = aggregate_results(goal, executed.subtasks)
        task = task.model_copy(update={
            "status": executed.status.value,
            "results": aggregated,
            "updated_at": datetime.now(timezone.utc),
        })
        await self.store.save_task(task)

        run = TaskRun(task=task)
        if notify and not demo_mode and executed.status in NOTIFY_STATUSES:
            run.callback = await self._dispatch_callback(task, locale)
            run.chat_notified = await self._notify_chat(task)

        logger.info(
            "Agent task finished",
            status=task.status,
            callback_queued=run.callback.queued if run.callback else False,
            chat_notified=run.chat_notified,
        )
        return run

    async def delegate(
        self,
        agent: AgentName,
        action: str,
        input: dict[str, Any],
        auth_header: Optional[str] = None,
        demo_mode: bool = False,
    ) -> dict[str, Any]:
        """
        Delegate a single sub-task to its domain agent.

        Raises:
            DelegationError: if the agent (and its fallback) fail
        """
        options = DelegateOptions(
            origin=self.origin,
            auth_header=auth_header,
            internal_secret=self.internal_secret,
            demo_mode=demo_mode,
        )
        ctx = DelegateContext(
            caller=self.caller,
            origin=self.origin,
            headers=build_delegate_headers(options),
        )
        spec = SubtaskSpec(agent=agent, action=action, input=input)
        return await delegate_subtask(spec, ctx, self.router)

    async def callback_for_task(self, task: TaskRecord, force: bool = False, locale: Optional[str] = None) -> CallbackOutcome:
        """Manually trigger the completion callback for a stored task."""
        if self.dispatcher is None:
            return CallbackOutcome(queued=False, reason="callback disabled")
        return await self.dispatcher.dispatch(self._callback_request(task, force, locale))

    def _callback_request(self, task: TaskRecord, force: bool, locale: Optional[str]) -> CallbackRequest:
        results = task.results
        return CallbackRequest(
            user_id=task.user_id,
            task_id=task.id,
            task_goal=task.goal,
            summary=results.summary if results else "",
            subtasks=results.subtasks if results else [],
            dashboard_url=dashboard_url(self.origin, task.id, locale),
            force=force,
        )

    async def _dispatch_callback(self, task: TaskRecord, locale: Optional[str]) -> Optional[CallbackOutcome]:
        if self.dispatcher is None:
            return None
        try:
            return await self.dispatcher.dispatch(self._callback_request(task, False, locale))
        except StoreError as e:
            logger.error("Callback lookup failed", task_id=task.id, error=str(e))
            capture_exception(e, {"task_id": task.id})
            return CallbackOutcome(queued=False, reason="failed to load callback preferences")

    async def _notify_chat(self, task: TaskRecord) -> bool:
        if self.telegram is None or task.results is None:
            return False
        try:
            return await notify_task_completion(
                self.store,
                self.telegram,
                user_id=task.user_id,
                task_id=task.id,
                summary=task.results.summary,
                origin=self.origin,
            )
        except StoreError as e:
            logger.warning("Chat notice skipped", task_id=task.id, error=str(e))
            return False
