from __future__ import annotations

import datetime as _dt

from taskforest.models.task import Review, Task
from taskforest.review import due_for_review, is_due_for_review, reviewed

NOW = _dt.datetime(2025, 1, 10, tzinfo=_dt.UTC)


def _t(title: str, review: Review | None, **kw: object) -> Task:
    return Task(owner_id="u1", title=title, review=review, **kw)


def test_reviewed_schedules_next_review() -> None:
    review = reviewed(Review(interval_days=14), NOW)
    assert review.last_reviewed == NOW
    assert review.next_review == _dt.datetime(2025, 1, 24, tzinfo=_dt.UTC)


def test_is_due_for_review() -> None:
    assert is_due_for_review(_t("never", Review()), NOW)
    assert is_due_for_review(_t("past", Review(next_review=NOW - _dt.timedelta(days=1))), NOW)
    assert is_due_for_review(_t("today", Review(next_review=NOW)), NOW)
    assert not is_due_for_review(_t("later", Review(next_review=NOW + _dt.timedelta(days=1))), NOW)
    assert not is_due_for_review(_t("off", Review(enabled=False)), NOW)
    assert not is_due_for_review(_t("none", None), NOW)
    assert not is_due_for_review(_t("done", Review(), status="done"), NOW)


def test_due_for_review_orders_never_reviewed_first() -> None:
    older = _t("older", Review(next_review=NOW - _dt.timedelta(days=5)))
    newer = _t("newer", Review(next_review=NOW - _dt.timedelta(days=1)))
    never = _t("never", Review())
    later = _t("later", Review(next_review=NOW + _dt.timedelta(days=2)))
    queue = due_for_review([newer, later, older, never], NOW)
    assert [t.title for t in queue] == ["never", "older", "newer"]
