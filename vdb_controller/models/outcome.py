"""
Result of a single reconcile pass.

The reconciler never touches the work queue itself; it returns an Outcome and
the controller turns it into a requeue decision.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Outcome:
    """What the work queue should do with a key after a reconcile pass."""

    requeue_after: Optional[float] = None
    requeue: bool = False
    error: Optional[Exception] = None

    @classmethod
    def done(cls) -> "Outcome":
        """Converged (or nothing to do); wait for the next change notification."""
        return cls()

    @classmethod
    def after(cls, seconds: float) -> "Outcome":
        """Succeeded; check again after a fixed delay."""
        return cls(requeue_after=seconds)

    @classmethod
    def failed(cls, error: Exception) -> "Outcome":
        """Failed; retry with the queue's per-key exponential backoff."""
        return cls(error=error)

    @classmethod
    def immediately(cls, error: Optional[Exception] = None) -> "Outcome":
        """Retry right away, bypassing backoff."""
        return cls(requeue=True, error=error)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def result(self) -> str:
        """Short label for logs and metrics."""
        if self.error is not None:
            return "requeue" if self.requeue else "error"
        if self.requeue or self.requeue_after is not None:
            return "requeue_after"
        return "success"
