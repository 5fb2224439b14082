"""
Delegate router tests.
"""

import pytest

from app.agents.orchestrator.executor import DelegateOptions, PlanExecutor, delegate_subtask
from app.agents.orchestrator.models import AgentName, SubtaskSpec, SubtaskState, TaskStatus
from app.agents.orchestrator.planner import build_task_plan
from app.agents.orchestrator.router import (
    DelegateContext,
    DelegateRouter,
    DelegateTarget,
)
from app.core.errors import DelegationError
from tests.fakes import ORIGIN, FakeRemoteCaller

BUSINESS = SubtaskSpec(
    agent=AgentName.BUSINESS,
    action="create_business_plan",
    input={"goal": "Open a bakery", "depth": "full"},
)


def _ctx(caller: FakeRemoteCaller) -> DelegateContext:
    return DelegateContext(caller=caller, origin=ORIGIN, headers={"authorization": "Bearer t"})


@pytest.mark.asyncio
async def test_business_route_without_project_uses_chat(remote: FakeRemoteCaller):
    target = await DelegateRouter().resolve(BUSINESS, _ctx(remote))

    assert target.endpoint == "/api/chat"
    assert target.body["message"] == "Create a business plan for: Open a bakery"
    assert target.body["context"] == "business"
    assert target.source == "business-agent-fallback"
    assert target.fallback is None


@pytest.mark.asyncio
async def test_business_route_with_project_runs_it(remote: FakeRemoteCaller):
    remote.reply("GET", "/api/business-agent/projects", body={"data": {"projects": [{"id": "p-42"}]}})

    target = await DelegateRouter().resolve(BUSINESS, _ctx(remote))

    assert target.endpoint == "/api/business-agent/run"
    assert target.body == {"projectId": "p-42"}
    assert target.fallback is not None
    assert target.fallback.endpoint == "/api/chat"
    # The project lookup carries the caller's credentials.
    assert remote.calls[0]["headers"]["authorization"] == "Bearer t"


@pytest.mark.asyncio
async def test_failed_project_run_falls_back_to_chat(remote: FakeRemoteCaller):
    remote.reply("GET", "/api/business-agent/projects", body={"data": {"projects": [{"id": "p-42"}]}})
    remote.reply("POST", "/api/business-agent/run", status_code=500)

    output = await delegate_subtask(BUSINESS, _ctx(remote))

    assert output["source"] == "business-agent-fallback"
    assert remote.paths() == [
        "GET /api/business-agent/projects",
        "POST /api/business-agent/run",
        "POST /api/chat",
    ]


@pytest.mark.asyncio
async def test_unreachable_project_lookup_is_not_fatal(remote: FakeRemoteCaller):
    remote.fail("GET", "/api/business-agent/projects")

    output = await delegate_subtask(BUSINESS, _ctx(remote))

    assert output == {"source": "business-agent-fallback", "data": {"reply": "ok"}}


@pytest.mark.asyncio
async def test_route_table_covers_every_agent(remote: FakeRemoteCaller):
    router = DelegateRouter()
    endpoints = {}
    for agent in AgentName:
        assert router.has_route(agent)
        spec = SubtaskSpec(agent=agent, action="run", input={"goal": "g"})
        endpoints[agent] = (await router.resolve(spec, _ctx(remote))).endpoint

    assert endpoints[AgentName.SOCIAL] == "/api/chat"
    assert endpoints[AgentName.VOICE] == "/api/voice-lab/jobs"
    assert endpoints[AgentName.AVATAR] == "/api/avatar/generate"
    assert endpoints[AgentName.MARKETPLACE] == "/api/marketplace/listings"


@pytest.mark.asyncio
async def test_register_route_replaces_builder(remote: FakeRemoteCaller):
    router = DelegateRouter()

    async def custom_avatar(spec, ctx):
        return DelegateTarget(endpoint="/api/avatar/v2", body={"p": spec.input["goal"]}, source="avatar-v2")

    router.register_route(AgentName.AVATAR, custom_avatar)
    remote.reply("POST", "/api/avatar/v2", body={"data": {"ok": True}})

    spec = SubtaskSpec(agent=AgentName.AVATAR, action="build_avatar", input={"goal": "g"})
    output = await delegate_subtask(spec, _ctx(remote), router)

    assert output == {"source": "avatar-v2", "data": {"ok": True}}


@pytest.mark.asyncio
async def test_missing_route_is_a_delegation_error(remote: FakeRemoteCaller):
    router = DelegateRouter(routes={})
    spec = SubtaskSpec(agent=AgentName.VOICE, action="generate_voiceover", input={})

    with pytest.raises(DelegationError):
        await delegate_subtask(spec, _ctx(remote), router)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"data": "oops"},
    {"data": ["p-1"]},
    {"data": {"projects": {"id": "p-1"}}},
    {"data": {"projects": ["p-1"]}},
    {"data": None},
])
async def test_malformed_project_list_falls_back_to_chat(remote: FakeRemoteCaller, body):
    remote.reply("GET", "/api/business-agent/projects", body=body)

    target = await DelegateRouter().resolve(BUSINESS, _ctx(remote))

    assert target.endpoint == "/api/chat"
    assert target.source == "business-agent-fallback"


@pytest.mark.asyncio
async def test_malformed_project_list_does_not_abort_plan(remote: FakeRemoteCaller):
    remote.reply("GET", "/api/business-agent/projects", body={"data": "oops"})
    remote.reply("POST", "/api/voice-lab/jobs", status_code=502)
    plan = build_task_plan("Business plan and a voice ad for my bakery")

    result = await PlanExecutor(remote).execute(plan, DelegateOptions(origin=ORIGIN))

    assert [r.agent for r in result.subtasks] == [AgentName.BUSINESS, AgentName.VOICE]
    assert [r.status for r in result.subtasks] == [SubtaskState.COMPLETED, SubtaskState.FAILED]
    assert result.status == TaskStatus.PARTIAL


def test_empty_route_table_stays_empty():
    router = DelegateRouter(routes={})

    assert not any(router.has_route(agent) for agent in AgentName)
