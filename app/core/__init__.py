"""Core infrastructure modules"""

from app.core.config import settings
from app.core.errors import AgentGError

__all__ = ["settings", "AgentGError"]
