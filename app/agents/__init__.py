"""
Agent G orchestration.

Goal -> Planner -> TaskPlan -> Executor -> Delegate Router -> domain agents,
with results folded into one task status by the Aggregator.
"""
