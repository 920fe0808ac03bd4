"""Monitoring services: evaluation, activity, lifecycle and notification."""

from .activity import ActivityRecord, ActivityTracker
from .evaluator import ConditionEvaluator, Decision
from .lifecycle import LifecycleManager
from .notification import NotificationDispatcher

__all__ = [
    "ActivityRecord",
    "ActivityTracker",
    "ConditionEvaluator",
    "Decision",
    "LifecycleManager",
    "NotificationDispatcher",
]
