from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable

from taskforest.models.task import PriorityBreakdown, Task

IMPORTANCE_WEIGHT = 3.0
URGENCY_WEIGHT = 2.5
QUICK_WIN_MINUTES = 15
QUICK_WIN_BONUS = 3.0
ENERGY_BONUS = {"low": 2.0, "medium": 1.0, "high": 0.0}


def score(task: Task) -> tuple[float, PriorityBreakdown]:
    """Ranking scalar for the to-do view plus its per-factor breakdown."""
    importance = task.importance * IMPORTANCE_WEIGHT
    urgency = task.urgency * URGENCY_WEIGHT
    estimate = task.time_estimate_minutes
    quick_win = QUICK_WIN_BONUS if estimate is not None and estimate <= QUICK_WIN_MINUTES else 0.0
    energy = ENERGY_BONUS.get(task.energy_level, 0.0)
    breakdown = PriorityBreakdown(
        importance=importance, urgency=urgency, quick_win=quick_win, energy=energy
    )
    return importance + urgency + quick_win + energy, breakdown


def apply_priority(task: Task, now: _dt.datetime) -> Task:
    total, breakdown = score(task)
    return task.model_copy(
        update={
            "computed_priority": total,
            "priority_breakdown": breakdown,
            "last_priority_update": now,
        }
    )


def is_actionable(task: Task) -> bool:
    return not task.is_project and not task.is_done


def rank_todo(tasks: Iterable[Task]) -> list[Task]:
    """Open, non-project tasks, highest score first; ties keep input order."""
    candidates = [t for t in tasks if is_actionable(t)]
    return sorted(candidates, key=lambda t: score(t)[0], reverse=True)


__all__ = ["apply_priority", "is_actionable", "rank_todo", "score"]
