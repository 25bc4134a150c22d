"""
Observability module for Cadence

Provides per-task metrics for the turn loop.
"""

from .task_metrics import TaskMetrics

__all__ = ["TaskMetrics"]
