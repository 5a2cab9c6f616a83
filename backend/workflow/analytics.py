"""Aggregations behind the workflow analytics view.

Pure functions over already-loaded rows; services.analytics_service does the
querying. Rows may be ORM objects or anything exposing the same attributes.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from core.constants import AnalyticsRange, ExecutionStatus, StepExecutionStatus, StepType

DEFAULT_TOP_ERRORS = 5
DEFAULT_SERIES_DAYS = 14


def range_start(range_: AnalyticsRange, now: datetime) -> Optional[datetime]:
    """First instant included in the window, or None for ``all``."""
    days = range_.days
    return now - timedelta(days=days) if days else None


def success_rate(completed: int, failed: int) -> int:
    """Completed share of finished runs, as a rounded percent. 0 when nothing finished."""
    denominator = completed + failed
    if denominator == 0:
        return 0
    return round(completed / denominator * 100)


def summarize_executions(executions: Iterable[Any]) -> dict:
    executions = list(executions)
    counts = Counter(e.status for e in executions)
    durations = [
        (e.completed_at - e.started_at).total_seconds() * 1000
        for e in executions
        if e.status == ExecutionStatus.COMPLETED and e.started_at and e.completed_at
    ]
    summary = {"total": len(executions)}
    for status in ExecutionStatus:
        summary[status.value] = counts.get(status.value, 0)
    summary["success_rate"] = success_rate(summary["completed"], summary["failed"])
    summary["avg_duration_ms"] = round(sum(durations) / len(durations)) if durations else 0
    return summary


def step_funnel(steps: Iterable[Any], step_executions: Iterable[Any]) -> list[dict]:
    """Per-step totals for every non-trigger step, in canvas order.

    Every StepExecution counts, retries included. Rows that only parked the
    execution on a wait step are left out; the visit that resumes it counts.
    """
    by_step: dict[str, Counter] = defaultdict(Counter)
    for row in step_executions:
        if row.status == StepExecutionStatus.WAITING.value:
            continue
        by_step[row.step_key][row.status] += 1

    funnel = []
    for step in sorted(steps, key=lambda s: s.step_order or 0):
        if step.step_type == StepType.TRIGGER:
            continue
        counts = by_step.get(step.step_key, Counter())
        total = sum(counts.values())
        completed = counts.get(StepExecutionStatus.COMPLETED.value, 0)
        config = step.step_config or {}
        funnel.append({
            "step_key": step.step_key,
            "step_type": step.step_type,
            "label": config.get("label") or step.step_key,
            "total": total,
            "completed": completed,
            "failed": counts.get(StepExecutionStatus.FAILED.value, 0),
            "skipped": counts.get(StepExecutionStatus.SKIPPED.value, 0),
            "completion_rate": round(completed / total * 100) if total else 0,
        })
    return funnel


def error_breakdown(executions: Iterable[Any], top: int = DEFAULT_TOP_ERRORS) -> list[dict]:
    """Most frequent error messages, including runs still retrying."""
    counts = Counter(e.error_message for e in executions if e.error_message)
    return [{"message": message, "count": count} for message, count in counts.most_common(top)]


def daily_series(executions: Iterable[Any], days: int = DEFAULT_SERIES_DAYS) -> list[dict]:
    """Executions per start date, limited to the most recent ``days`` dates with activity."""
    buckets: dict[str, Counter] = defaultdict(Counter)
    for e in executions:
        if not e.started_at:
            continue
        day = e.started_at.date().isoformat()
        buckets[day]["total"] += 1
        buckets[day][e.status] += 1

    series = [
        {
            "date": day,
            "total": counts["total"],
            "completed": counts.get(ExecutionStatus.COMPLETED.value, 0),
            "failed": counts.get(ExecutionStatus.FAILED.value, 0),
        }
        for day, counts in sorted(buckets.items())
    ]
    return series[-days:] if days else series


def compute_workflow_analytics(
    executions: Iterable[Any],
    step_executions: Iterable[Any],
    steps: Iterable[Any],
    range_: AnalyticsRange = AnalyticsRange.LAST_30_DAYS,
    top_errors: int = DEFAULT_TOP_ERRORS,
    series_days: int = DEFAULT_SERIES_DAYS,
) -> dict:
    """Assemble the full analytics payload for one workflow."""
    executions = list(executions)
    return {
        "range": range_.value,
        "summary": summarize_executions(executions),
        "step_funnel": step_funnel(steps, step_executions),
        "errors": error_breakdown(executions, top_errors),
        "daily": daily_series(executions, series_days),
    }
