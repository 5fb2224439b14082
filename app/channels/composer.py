"""
Notification composer.
Builds dashboard/output links, chat replies and the spoken callback script
for a finished task.
"""

from typing import Optional
from urllib.parse import quote

from app.agents.orchestrator.models import SubtaskResult

SUPPORTED_LOCALES = ("en", "ka", "ru")

# Rough speaking rate used to keep the callback script within the voice limit.
CHARS_PER_SECOND = 15


def normalize_locale(locale: Optional[str]) -> str:
    candidate = (locale or "").strip().lower()
    return candidate if candidate in SUPPORTED_LOCALES else "en"


def first_line(text: str) -> str:
    return (text or "").split("\n", 1)[0]


def dashboard_url(origin: str, task_id: str, locale: Optional[str] = None) -> str:
    """Localized dashboard URL focused on a single task."""
    return (
        f"{origin.rstrip('/')}/{normalize_locale(locale)}"
        f"/services/agent-g/dashboard?task={quote(task_id, safe='')}"
    )


def output_url(origin: str, task_id: str, fmt: str) -> str:
    return f"{origin.rstrip('/')}/api/v1/agent/output?task_id={quote(task_id, safe='')}&format={fmt}"


def output_links(origin: str, task_id: str, locale: Optional[str] = None) -> dict[str, str]:
    return {
        "dashboard": dashboard_url(origin, task_id, locale),
        "markdown": output_url(origin, task_id, "markdown"),
        "zip": output_url(origin, task_id, "zip"),
    }


def completion_messages(
    summary: str,
    origin: str,
    task_id: str,
    locale: Optional[str] = None,
) -> list[str]:
    """Chat reply lines for a finished task: headline, then one line per link."""
    links = output_links(origin, task_id, locale)
    return [
        f"Done. {first_line(summary)}",
        f"Dashboard: {links['dashboard']}",
        f"Report: {links['markdown']}",
        f"ZIP: {links['zip']}",
    ]


def completion_notice(
    summary: str,
    origin: str,
    task_id: str,
    locale: Optional[str] = None,
) -> str:
    """Single-message variant of completion_messages for push notifications."""
    return "\n".join(["Agent G finished your task.", *completion_messages(summary, origin, task_id, locale)])


def truncate_for_speech(script: str, max_seconds: int) -> str:
    limit = max(max_seconds, 1) * CHARS_PER_SECOND
    if len(script) <= limit:
        return script
    cut = script[:limit].rsplit(" ", 1)[0].rstrip(" ,.;:")
    return f"{cut}..."


def callback_script(
    goal: str,
    summary: str,
    subtasks: list[SubtaskResult],
    dashboard: str,
    display_name: Optional[str] = None,
    max_seconds: Optional[int] = None,
) -> str:
    """
    Spoken script for a task-completion callback.

    Args:
        goal: The user's original goal
        summary: Aggregated summary; only its headline is read out
        subtasks: Executed sub-tasks, one spoken line each
        dashboard: Link to the task dashboard
        display_name: Optional name to greet the user with
        max_seconds: Truncate the script to roughly this much speech

    Returns:
        Script text
    """
    greeting = f"Hi {display_name}, this is Agent G." if display_name else "Hi, this is Agent G."
    lines = [
        greeting,
        f"Your task is finished: {goal}.",
        first_line(summary),
        *(f"{s.agent.value} / {s.action}: {s.status.value}" for s in subtasks),
        f"Details are on your dashboard: {dashboard}",
    ]
    script = "\n".join(line for line in lines if line)

    if max_seconds:
        script = truncate_for_speech(script, max_seconds)
    return script
