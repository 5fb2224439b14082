"""
Goal planner.
Classifies a free-text goal with keyword rules and decomposes it into an
ordered list of sub-tasks, one per matched domain agent.
"""

import re
import uuid
from typing import Any, Callable

import structlog

from app.agents.orchestrator.models import (
    AgentName,
    SubtaskSpec,
    TaskPlan,
    TaskType,
)

logger = structlog.get_logger(__name__)


# Keyword sets per category (English, Georgian, Russian), matched as
# substrings of the lower-cased goal.
CATEGORY_KEYWORDS: dict[TaskType, list[str]] = {
    TaskType.BUSINESS: [
        "business", "startup", "company", "revenue", "strategy", "investor",
        "pitch", "ბიზნეს", "სტარტაპ", "კომპანი", "бизнес", "стартап", "компани",
    ],
    TaskType.SOCIAL: [
        "social", "instagram", "facebook", "tiktok", "linkedin", "post",
        "caption", "hashtag", "სოციალურ", "პოსტ", "соцсет", "пост",
    ],
    TaskType.VOICE: [
        "voice", "audio", "podcast", "narrat", "speech", "ხმოვან", "ხმის",
        "აუდიო", "голос", "аудио", "озвуч",
    ],
    TaskType.MARKETPLACE: [
        "marketplace", "listing", "sell", "shop", "product", "მარკეტპლეის",
        "გაყიდ", "маркетплейс", "продаж", "продать", "товар",
    ],
    TaskType.AVATAR: [
        "avatar", "digital twin", "headshot", "ავატარ", "аватар",
    ],
}

# Emission order for hybrid plans. Earlier agents produce material later
# ones build on (a business plan before the posts that reference it).
CATEGORY_ORDER: list[TaskType] = [
    TaskType.BUSINESS,
    TaskType.SOCIAL,
    TaskType.VOICE,
    TaskType.MARKETPLACE,
    TaskType.AVATAR,
]

DEFAULT_SOCIAL_POST_COUNT = 5

_PLATFORMS = ["instagram", "facebook", "tiktok", "linkedin", "twitter"]
_GEORGIAN = re.compile(r"[\u10a0-\u10ff]")
_CYRILLIC = re.compile(r"[\u0400-\u04ff]")


def detect_language(text: str) -> str:
    """Guess the goal language from its script: Georgian, Russian or English."""
    if _GEORGIAN.search(text):
        return "ka"
    if _CYRILLIC.search(text):
        return "ru"
    return "en"


def _business_task(goal: str, lowered: str) -> SubtaskSpec:
    return SubtaskSpec(
        agent=AgentName.BUSINESS,
        action="create_business_plan",
        input={"goal": goal, "depth": "full"},
    )


def _social_task(goal: str, lowered: str) -> SubtaskSpec:
    platforms = [p for p in _PLATFORMS if p in lowered]
    return SubtaskSpec(
        agent=AgentName.SOCIAL,
        action="generate_posts",
        input={
            "goal": goal,
            "post_count": DEFAULT_SOCIAL_POST_COUNT,
            "platforms": platforms or ["instagram", "facebook"],
        },
    )


def _voice_task(goal: str, lowered: str) -> SubtaskSpec:
    return SubtaskSpec(
        agent=AgentName.VOICE,
        action="generate_voiceover",
        input={"goal": goal, "language": detect_language(goal)},
    )


def _marketplace_task(goal: str, lowered: str) -> SubtaskSpec:
    return SubtaskSpec(
        agent=AgentName.MARKETPLACE,
        action="create_listing",
        input={"goal": goal, "draft": True},
    )


def _avatar_task(goal: str, lowered: str) -> SubtaskSpec:
    return SubtaskSpec(
        agent=AgentName.AVATAR,
        action="build_avatar",
        input={"goal": goal, "style": "realistic"},
    )


SUBTASK_BUILDERS: dict[TaskType, Callable[[str, str], SubtaskSpec]] = {
    TaskType.BUSINESS: _business_task,
    TaskType.SOCIAL: _social_task,
    TaskType.VOICE: _voice_task,
    TaskType.MARKETPLACE: _marketplace_task,
    TaskType.AVATAR: _avatar_task,
}

CATEGORY_OUTPUTS: dict[TaskType, str] = {
    TaskType.BUSINESS: "business_plan",
    TaskType.SOCIAL: "posts",
    TaskType.VOICE: "audio",
    TaskType.MARKETPLACE: "listing",
    TaskType.AVATAR: "image",
}

BASE_OUTPUTS = {"text", "markdown", "zip"}


def match_categories(goal: str) -> list[TaskType]:
    """Return every category whose keyword set matches the goal, in CATEGORY_ORDER."""
    lowered = goal.lower()
    return [
        category
        for category in CATEGORY_ORDER
        if any(keyword in lowered for keyword in CATEGORY_KEYWORDS[category])
    ]


def build_task_plan(goal: str) -> TaskPlan:
    """
    Build an execution plan for a goal.

    Args:
        goal: Free-text objective supplied by the user

    Returns:
        TaskPlan with at least one sub-task
    """
    lowered = goal.lower()
    matched = match_categories(goal)

    if not matched:
        # Nothing recognisable: a light business pass still gives the user something.
        sub_tasks = [
            SubtaskSpec(
                agent=AgentName.BUSINESS,
                action="create_business_plan",
                input={"goal": goal, "depth": "light"},
            )
        ]
        task_type = TaskType.BUSINESS
        outputs = set(BASE_OUTPUTS)
    else:
        sub_tasks = [SUBTASK_BUILDERS[category](goal, lowered) for category in matched]
        task_type = matched[0] if len(matched) == 1 else TaskType.HYBRID
        outputs = BASE_OUTPUTS | {CATEGORY_OUTPUTS[category] for category in matched}

    plan = TaskPlan(
        main_goal=goal,
        task_type=task_type,
        sub_tasks=sub_tasks,
        expected_outputs=sorted(outputs),
    )

    logger.debug(
        "Plan built",
        task_type=task_type.value,
        agents=[s.agent.value for s in sub_tasks],
    )
    return plan


def make_task_id() -> str:
    """Generate a new task identifier."""
    return str(uuid.uuid4())


def plan_summary(plan: TaskPlan) -> dict[str, Any]:
    """Compact description of a plan for logs and API responses."""
    return {
        "task_type": plan.task_type.value,
        "steps": [f"{s.agent.value}:{s.action}" for s in plan.sub_tasks],
        "expected_outputs": plan.expected_outputs,
    }
