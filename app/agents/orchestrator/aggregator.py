"""
Result aggregator.
Turns the executor's per-sub-task results into a summary, a markdown report
and output-availability flags.
"""

import json

import structlog

from app.agents.orchestrator.models import (
    AgentName,
    AggregatedResult,
    SubtaskResult,
    SubtaskState,
    aggregate_status,
)

logger = structlog.get_logger(__name__)


AGENT_LABELS: dict[AgentName, str] = {
    AgentName.BUSINESS: "Business plan",
    AgentName.SOCIAL: "Social media content",
    AgentName.VOICE: "Voice-over",
    AgentName.AVATAR: "Avatar",
    AgentName.MARKETPLACE: "Marketplace listing",
}


def _subtask_line(result: SubtaskResult) -> str:
    label = AGENT_LABELS.get(result.agent, result.agent.value)
    if result.status == SubtaskState.COMPLETED:
        return f"- {label}: done"
    return f"- {label}: failed ({result.error or 'unknown error'})"


def build_summary(goal: str, subtasks: list[SubtaskResult]) -> str:
    """First line is a one-sentence headline, followed by one line per sub-task."""
    completed = sum(1 for s in subtasks if s.status == SubtaskState.COMPLETED)
    status = aggregate_status(subtasks)

    headline = f"{completed}/{len(subtasks)} steps completed ({status.value}) for: {goal}"
    return "\n".join([headline, *(_subtask_line(s) for s in subtasks)])


def build_markdown(goal: str, subtasks: list[SubtaskResult]) -> str:
    """Render a markdown report of every sub-task and its output."""
    parts = ["# Agent G report\n", f"**Goal:** {goal}\n"]

    for index, result in enumerate(subtasks, 1):
        label = AGENT_LABELS.get(result.agent, result.agent.value)
        parts.append(f"## {index}. {label} ({result.agent.value} / {result.action})")
        parts.append(f"**Status:** {result.status.value}")

        if result.error:
            parts.append(f"\n**Error:** {result.error}")
            if result.retryable:
                parts.append("*This step can be retried.*")

        if result.output:
            parts.append("\n```json")
            parts.append(json.dumps(result.output, indent=2, ensure_ascii=False, default=str))
            parts.append("```")

        parts.append("")

    return "\n".join(parts)


def aggregate_results(goal: str, subtasks: list[SubtaskResult]) -> AggregatedResult:
    """
    Aggregate executed sub-tasks into user-facing output.

    Args:
        goal: The original goal
        subtasks: Executor results in plan order

    Returns:
        AggregatedResult with summary, markdown and output flags
    """
    completed_agents = {s.agent for s in subtasks if s.status == SubtaskState.COMPLETED}

    outputs = {
        "text": True,
        "markdown": True,
        "zip": True,
        "audio": AgentName.VOICE in completed_agents,
        "image": AgentName.AVATAR in completed_agents,
    }

    return AggregatedResult(
        summary=build_summary(goal, subtasks),
        markdown=build_markdown(goal, subtasks),
        subtasks=subtasks,
        outputs=outputs,
    )
