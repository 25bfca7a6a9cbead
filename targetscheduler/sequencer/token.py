import threading

from targetscheduler.errors import SequenceCancelled


class CancellationToken:
    """Cooperative cancellation shared between the host and a running plan."""

    def __init__(self):
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SequenceCancelled(self._reason or "sequence was cancelled")

    def wait(self, timeout_s: float) -> bool:
        """Sleep up to timeout_s; True if cancelled meanwhile."""
        return self._event.wait(max(0.0, timeout_s))
