"""API Route modules"""

from app.api.routes.agent import router as agent_router
from app.api.routes.calls import router as calls_router
from app.api.routes.webhooks import router as webhooks_router

__all__ = [
    "agent_router",
    "calls_router",
    "webhooks_router",
]
