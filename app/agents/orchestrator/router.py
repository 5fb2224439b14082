"""
Delegate router.
Maps a sub-task (agent, action, input) to the concrete remote call that
performs it. Adding an agent means registering one route builder here.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from app.agents.orchestrator.models import AgentName, SubtaskSpec
from app.core.errors import RemoteCallError
from app.services.remote import RemoteCaller

logger = structlog.get_logger(__name__)


class DelegateTarget(BaseModel):
    """Description of one remote call, with an optional call to try if it fails."""
    endpoint: str
    method: str = "POST"
    body: dict[str, Any] = {}
    source: str
    fallback: Optional["DelegateTarget"] = None


@dataclass
class DelegateContext:
    """Where and as whom delegate calls are made."""
    caller: RemoteCaller
    origin: str
    headers: dict[str, str] = field(default_factory=dict)

    def url(self, endpoint: str) -> str:
        return f"{self.origin.rstrip('/')}{endpoint}"


RouteBuilder = Callable[[SubtaskSpec, DelegateContext], Awaitable[DelegateTarget]]


def _goal(spec: SubtaskSpec) -> str:
    return str(spec.input.get("goal", ""))


def _business_chat_target(spec: SubtaskSpec) -> DelegateTarget:
    return DelegateTarget(
        endpoint="/api/chat",
        body={
            "message": f"Create a business plan for: {_goal(spec)}",
            "context": "business",
            "depth": spec.input.get("depth", "full"),
        },
        source="business-agent-fallback",
    )


async def _find_business_project(ctx: DelegateContext) -> Optional[str]:
    """Look up the caller's most recent business-agent project, if any."""
    try:
        response = await ctx.caller.call(
            "GET", ctx.url("/api/business-agent/projects"), headers=ctx.headers
        )
    except RemoteCallError as e:
        logger.info("Business project lookup failed", error=str(e))
        return None

    if not response.ok or not isinstance(response.body, dict):
        return None

    # Anything other than {"data": {"projects": [{"id": ...}, ...]}} means no project.
    data = response.body.get("data")
    projects = data.get("projects") if isinstance(data, dict) else None
    if not isinstance(projects, list) or not projects:
        return None

    latest = projects[0]
    if isinstance(latest, dict) and latest.get("id"):
        return str(latest["id"])
    return None


async def business_route(spec: SubtaskSpec, ctx: DelegateContext) -> DelegateTarget:
    """Re-run an existing project when there is one, otherwise create a plan via chat."""
    project_id = await _find_business_project(ctx)
    if project_id:
        return DelegateTarget(
            endpoint="/api/business-agent/run",
            body={"projectId": project_id},
            source="business-agent",
            fallback=_business_chat_target(spec),
        )
    return _business_chat_target(spec)


async def social_route(spec: SubtaskSpec, ctx: DelegateContext) -> DelegateTarget:
    count = spec.input.get("post_count", 5)
    return DelegateTarget(
        endpoint="/api/chat",
        body={
            "message": f"Create {count} social media posts for: {_goal(spec)}",
            "context": "social",
            "platforms": spec.input.get("platforms", []),
        },
        source=AgentName.SOCIAL.value,
    )


async def voice_route(spec: SubtaskSpec, ctx: DelegateContext) -> DelegateTarget:
    return DelegateTarget(
        endpoint="/api/voice-lab/jobs",
        body={
            "type": "generate",
            "input": {
                "text": _goal(spec),
                "language": spec.input.get("language", "en"),
            },
        },
        source=AgentName.VOICE.value,
    )


async def avatar_route(spec: SubtaskSpec, ctx: DelegateContext) -> DelegateTarget:
    return DelegateTarget(
        endpoint="/api/avatar/generate",
        body={"prompt": _goal(spec), "style": spec.input.get("style", "realistic")},
        source=AgentName.AVATAR.value,
    )


async def marketplace_route(spec: SubtaskSpec, ctx: DelegateContext) -> DelegateTarget:
    goal = _goal(spec)
    return DelegateTarget(
        endpoint="/api/marketplace/listings",
        body={
            "title": goal[:80],
            "description": goal,
            "status": "draft" if spec.input.get("draft", True) else "active",
        },
        source=AgentName.MARKETPLACE.value,
    )


DEFAULT_ROUTES: dict[AgentName, RouteBuilder] = {
    AgentName.BUSINESS: business_route,
    AgentName.SOCIAL: social_route,
    AgentName.VOICE: voice_route,
    AgentName.AVATAR: avatar_route,
    AgentName.MARKETPLACE: marketplace_route,
}


class DelegateRouter:
    """Resolves sub-tasks to remote calls using a per-agent route table."""

    def __init__(self, routes: Optional[dict[AgentName, RouteBuilder]] = None):
        self._routes: dict[AgentName, RouteBuilder] = dict(
            routes if routes is not None else DEFAULT_ROUTES
        )

    def register_route(self, agent: AgentName, builder: RouteBuilder) -> None:
        """Register or replace the route builder for an agent."""
        self._routes[agent] = builder
        logger.info("Delegate route registered", agent=agent.value)

    def has_route(self, agent: AgentName) -> bool:
        return agent in self._routes

    async def resolve(self, spec: SubtaskSpec, ctx: DelegateContext) -> DelegateTarget:
        """
        Build the remote call for a sub-task.

        Raises:
            KeyError: if no route is registered for the agent
        """
        builder = self._routes.get(spec.agent)
        if builder is None:
            raise KeyError(f"No delegate route for agent: {spec.agent.value}")
        return await builder(spec, ctx)


# Global router instance
delegate_router = DelegateRouter()
