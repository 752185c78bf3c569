"""Post-commit side effects returned by primary operations.

Operations such as adding watchlist entries commit their own writes and
hand back a list of follow-up tasks (screen cross-tagging, profile
enrichment). The caller runs them; each task fails on its own.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger("portfolio_tracker.tasks")


@dataclass
class PostCommitTask:
    name: str
    func: Callable[[], Any]


@dataclass
class TaskReport:
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def run_post_commit_tasks(tasks: list[PostCommitTask]) -> TaskReport:
    """Run every task, recording failures without stopping the rest."""
    report = TaskReport()
    for task in tasks:
        try:
            task.func()
            report.succeeded.append(task.name)
        except Exception as e:
            logger.warning("Post-commit task %s failed: %s", task.name, e, exc_info=True)
            report.failed[task.name] = str(e)
    return report
