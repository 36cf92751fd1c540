import threading
import time
from collections.abc import Callable

from portfolio_risk.errors import ComputationTimeoutError


class CancellationToken:
    """Cooperative cancellation with an optional deadline.

    Long computations call ``raise_if_cancelled`` between units of work.
    """

    def __init__(
        self,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._event = threading.Event()
        self.deadline = clock() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and self._clock() >= self.deadline

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def raise_if_cancelled(self, what: str = "computation") -> None:
        if self.cancelled:
            raise ComputationTimeoutError(f"{what} cancelled or past its deadline")
