"""
Assistant mode for voice sessions.
"platform" sessions drive Agent G tasks; "general" sessions are open conversation.
"""

from typing import Literal

from app.agents.orchestrator.planner import match_categories

AssistantMode = Literal["platform", "general"]


def infer_assistant_mode(text: str, prefer_platform: bool = False) -> AssistantMode:
    """Platform mode when the text names a platform capability or the caller asks for it."""
    if prefer_platform or match_categories(text or ""):
        return "platform"
    return "general"
