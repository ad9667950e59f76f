from __future__ import annotations


class TaskForestError(Exception):
    """Base class for errors raised by the task forest core."""


class NotFoundError(TaskForestError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class InvalidParentError(TaskForestError):
    """A move would make a task its own ancestor."""

    def __init__(self, task_id: str, parent_id: str) -> None:
        if task_id == parent_id:
            msg = f"task {task_id} cannot be its own parent"
        else:
            msg = f"task {parent_id} is a descendant of {task_id}"
        super().__init__(msg)
        self.task_id = task_id
        self.parent_id = parent_id


class PartialImportError(TaskForestError):
    """One or more write groups failed during an import.

    Groups that committed before (or alongside) the failure stay committed;
    re-running the import mints fresh ids and duplicates those records.
    """

    def __init__(
        self,
        *,
        committed_records: int,
        committed_groups: int,
        failed_groups: int,
        total_records: int,
    ) -> None:
        super().__init__(
            f"import failed: {failed_groups} write group(s) failed; "
            f"{committed_records}/{total_records} records in {committed_groups} group(s) committed"
        )
        self.committed_records = committed_records
        self.committed_groups = committed_groups
        self.failed_groups = failed_groups
        self.total_records = total_records


__all__ = ["TaskForestError", "NotFoundError", "InvalidParentError", "PartialImportError"]
