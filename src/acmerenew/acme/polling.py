"""Deadlines and exponential backoff for the ACME poll loops.

Every loop that waits on the CA goes through :class:`Poller`, which
owns the injectable ``sleep`` / ``clock`` pair so tests can run the
whole protocol without real waiting.

Usage::

    poller = Poller(BackoffPolicy.from_settings(settings.polling))
    run = poller.deadline(settings.polling.run_timeout_seconds)
    stage = poller.deadline(300, parent=run)
    order = poller.poll(fetch_order, lambda o: o.status == "valid",
                        deadline=stage, what="order",
                        on_timeout=FinalizationTimeoutError)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from acmerenew.core.errors import AcmerenewError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from acmerenew.config.settings import PollingSettings

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay schedule: *initial*, multiplied by *factor*, capped at *max*."""

    initial_delay: float = 2.0
    max_delay: float = 30.0
    factor: float = 2.0

    @classmethod
    def from_settings(cls, settings: PollingSettings) -> BackoffPolicy:
        return cls(
            initial_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            factor=settings.backoff_factor,
        )

    def delays(self) -> Iterator[float]:
        """Yield the delay before each successive retry, forever."""
        delay = self.initial_delay
        while True:
            yield min(delay, self.max_delay)
            delay = min(delay * self.factor, self.max_delay)


class Deadline:
    """A point in monotonic time, optionally bounded by a *parent*.

    The effective expiry is the earlier of the two, so a stage deadline
    never outlives the run ceiling.
    """

    def __init__(
        self,
        seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        parent: Deadline | None = None,
    ) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds
        self._parent = parent

    def remaining(self) -> float:
        own = self._expires_at - self._clock()
        if self._parent is not None:
            own = min(own, self._parent.remaining())
        return max(0.0, own)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


class Poller:
    """Runs fetch/check loops against a :class:`Deadline`.

    Parameters
    ----------
    policy:
        Backoff schedule between attempts.
    sleep:
        Replacement for :func:`time.sleep` (tests).
    clock:
        Replacement for :func:`time.monotonic` (tests).

    """

    def __init__(
        self,
        policy: BackoffPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._clock = clock

    def deadline(self, seconds: float, *, parent: Deadline | None = None) -> Deadline:
        return Deadline(seconds, clock=self._clock, parent=parent)

    def _wait(self, delay: float, retry_after: float | None, deadline: Deadline) -> None:
        if retry_after is not None:
            delay = max(delay, retry_after)
        self._sleep(min(delay, deadline.remaining()))

    def poll(  # noqa: PLR0913
        self,
        fetch: Callable[[], tuple[T, float | None]],
        done: Callable[[T], bool],
        *,
        deadline: Deadline,
        what: str,
        on_timeout: Callable[..., AcmerenewError],
        stage: str | None = None,
    ) -> T:
        """Call *fetch* until *done* accepts its result or *deadline* passes.

        *fetch* returns ``(value, retry_after)``; a ``Retry-After`` hint
        from the CA stretches the next delay but never past the deadline.
        Retryable :class:`AcmerenewError` from *fetch* are absorbed until
        the deadline; anything else propagates immediately.

        Raises
        ------
        AcmerenewError
            ``on_timeout(message, stage=stage)`` once the deadline is
            exhausted, chained to the last transient error if any.

        """
        delays = self.policy.delays()
        last_error: AcmerenewError | None = None
        attempt = 0
        while True:
            attempt += 1
            retry_after: float | None = None
            try:
                value, retry_after = fetch()
            except AcmerenewError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
                retry_after = getattr(exc, "retry_after", None)
                log.warning(
                    "Transient error polling %s (attempt %d): %s",
                    what,
                    attempt,
                    exc.detail,
                )
            else:
                last_error = None
                if done(value):
                    return value

            if deadline.expired:
                msg = f"Timed out after {deadline.seconds:g}s waiting for {what}"
                if last_error is not None:
                    msg += f" (last error: {last_error.detail})"
                raise on_timeout(msg, stage=stage) from last_error

            delay = next(delays)
            log.debug("Polling %s again in %.1fs", what, delay)
            self._wait(delay, retry_after, deadline)

    def call(
        self,
        func: Callable[[], T],
        *,
        deadline: Deadline,
        what: str,
    ) -> T:
        """Run a single request, retrying transient failures until *deadline*.

        The last transient error is re-raised unchanged once the deadline
        is spent.
        """
        delays = self.policy.delays()
        while True:
            try:
                return func()
            except AcmerenewError as exc:
                if not exc.retryable or deadline.expired:
                    raise
                delay = next(delays)
                log.warning(
                    "Transient error during %s, retrying in %.1fs: %s",
                    what,
                    delay,
                    exc.detail,
                )
                self._wait(delay, getattr(exc, "retry_after", None), deadline)
