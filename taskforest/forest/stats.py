from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

from taskforest.models.task import Task


class ForestStats(BaseModel):
    total: int = 0
    active: int = 0
    completed: int = 0
    projects: int = 0
    focused: int = 0
    with_due_date: int = 0
    avg_time_estimate: int = 0
    by_context: dict[str, int] = Field(default_factory=dict)
    by_level: dict[int, int] = Field(default_factory=dict)


def collect_stats(tasks: Iterable[Task]) -> ForestStats:
    """Summary counts shown after an import and by the ``stats`` command."""
    stats = ForestStats()
    estimates: list[int] = []
    for t in tasks:
        stats.total += 1
        if t.is_done:
            stats.completed += 1
        else:
            stats.active += 1
            if t.today_focus:
                stats.focused += 1
        if t.is_project:
            stats.projects += 1
        if t.due_date is not None:
            stats.with_due_date += 1
        if t.context:
            stats.by_context[t.context] = stats.by_context.get(t.context, 0) + 1
        stats.by_level[t.level] = stats.by_level.get(t.level, 0) + 1
        if t.time_estimate_minutes:
            estimates.append(t.time_estimate_minutes)
    if estimates:
        stats.avg_time_estimate = round(sum(estimates) / len(estimates))
    return stats


__all__ = ["ForestStats", "collect_stats"]
