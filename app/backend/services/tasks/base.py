"""Common interface of scheduled jobs."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Task(ABC):
    """A unit of scheduled work.

    `run` is blocking and is executed on a worker thread while the task holds
    the scheduler's execution slot. Implementations record their own failures
    in metrics and logs; an exception escaping `run` is logged by the scheduler.
    """

    name: str = "task"

    @abstractmethod
    def run(self) -> None:
        """Execute the task once."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name}>"
