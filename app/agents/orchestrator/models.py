"""
Plan and result models shared by the planner, router, executor and aggregator.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AgentName(str, Enum):
    """Domain agents a sub-task can be delegated to."""
    BUSINESS = "business-agent"
    SOCIAL = "social-media"
    VOICE = "voice-lab"
    AVATAR = "avatar-builder"
    MARKETPLACE = "marketplace"


class TaskType(str, Enum):
    """Classification of a goal."""
    BUSINESS = "business"
    SOCIAL = "social"
    VOICE = "voice"
    AVATAR = "avatar"
    MARKETPLACE = "marketplace"
    HYBRID = "hybrid"


class SubtaskState(str, Enum):
    """Outcome of one delegated sub-task."""
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Aggregate outcome of a whole plan."""
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class SubtaskSpec(BaseModel):
    """One unit of delegated work, produced by the planner."""
    model_config = ConfigDict(frozen=True)

    agent: AgentName
    action: str
    input: dict[str, Any] = {}


class TaskPlan(BaseModel):
    """Ordered execution plan for a goal."""
    model_config = ConfigDict(frozen=True)

    main_goal: str
    task_type: TaskType
    sub_tasks: list[SubtaskSpec]
    expected_outputs: list[str] = []


class SubtaskResult(BaseModel):
    """
    Outcome of a delegated sub-task.

    `output` is set only for completed results, `error` only for failed ones.
    `retryable` marks failures worth re-invoking the same agent/action for
    (transport errors, timeouts, 5xx).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    agent: AgentName
    action: str
    status: SubtaskState
    input: dict[str, Any] = {}
    output: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    retryable: bool = False


class ExecutionResult(BaseModel):
    """Executor output: aggregate status plus per-sub-task results in plan order."""
    status: TaskStatus
    subtasks: list[SubtaskResult]


class AggregatedResult(BaseModel):
    """User-facing rendering of an executed plan."""
    summary: str
    markdown: str
    subtasks: list[SubtaskResult]
    outputs: dict[str, bool] = {}


def aggregate_status(results: list[SubtaskResult]) -> TaskStatus:
    """Derive the task status from the sub-task status multiset."""
    completed = sum(1 for r in results if r.status == SubtaskState.COMPLETED)
    failed = sum(1 for r in results if r.status == SubtaskState.FAILED)

    if completed and not failed:
        return TaskStatus.COMPLETED
    if completed and failed:
        return TaskStatus.PARTIAL
    return TaskStatus.FAILED
