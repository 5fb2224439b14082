"""
Planner, router, executor and aggregator for Agent G tasks.
"""

from app.agents.orchestrator.aggregator import aggregate_results
from app.agents.orchestrator.executor import DelegateOptions, PlanExecutor
from app.agents.orchestrator.planner import build_task_plan, make_task_id
from app.agents.orchestrator.router import DelegateRouter, delegate_router

__all__ = [
    "aggregate_results",
    "DelegateOptions",
    "PlanExecutor",
    "build_task_plan",
    "make_task_id",
    "DelegateRouter",
    "delegate_router",
]
