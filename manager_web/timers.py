"""
Timer backend and the inactivity scheduler. All session deadlines go through one
InactivityScheduler so a reset or teardown can cancel every pending callback at once.
Tests swap LoopTimers for a virtual clock.
"""
import asyncio
import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopTimers:
    """Timers on the running asyncio loop (loop.time() is monotonic seconds)."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class InactivityScheduler:
    """
    Owns the warning deadline, the hard-expiry deadline and the warning countdown ticker.
    Both deadlines are computed from the same activity instant, so expiry always follows
    warning by exactly `warning_lead` seconds unless both are cancelled together.
    """

    def __init__(
        self,
        timers: Timers,
        *,
        idle_timeout: float,
        warning_lead: float,
        on_warning: Callable[[], None],
        on_expiry: Callable[[], None],
    ):
        if not 0 < warning_lead < idle_timeout:
            raise ValueError("warning_lead must be positive and shorter than idle_timeout")
        self.timers = timers
        self.idle_timeout = idle_timeout
        self.warning_lead = warning_lead
        self._on_warning = on_warning
        self._on_expiry = on_expiry
        self._warning_handle: TimerHandle | None = None
        self._expiry_handle: TimerHandle | None = None
        self._tick_handle: TimerHandle | None = None
        self.warning_deadline: float | None = None
        self.expiry_deadline: float | None = None

    def schedule_from(self, activity_instant: float) -> None:
        """Cancel everything pending and schedule warning and expiry relative to activity_instant."""
        self.cancel_all()
        now = self.timers.now()
        self.warning_deadline = activity_instant + self.idle_timeout - self.warning_lead
        self.expiry_deadline = activity_instant + self.idle_timeout
        self._warning_handle = self.timers.call_later(max(0.0, self.warning_deadline - now), self._fire_warning)
        self._expiry_handle = self.timers.call_later(max(0.0, self.expiry_deadline - now), self._fire_expiry)

    def start_countdown(self, interval: float, on_tick: Callable[[], None]) -> None:
        """Call on_tick every interval seconds until cancel_all() or stop_countdown()."""
        self.stop_countdown()

        def _tick():
            self._tick_handle = self.timers.call_later(interval, _tick)
            on_tick()

        self._tick_handle = self.timers.call_later(interval, _tick)

    def stop_countdown(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def cancel_all(self) -> None:
        for handle in (self._warning_handle, self._expiry_handle):
            if handle is not None:
                handle.cancel()
        self._warning_handle = None
        self._expiry_handle = None
        self.warning_deadline = None
        self.expiry_deadline = None
        self.stop_countdown()

    @property
    def pending(self) -> bool:
        return self._warning_handle is not None or self._expiry_handle is not None

    def _fire_warning(self) -> None:
        self._warning_handle = None
        self._on_warning()

    def _fire_expiry(self) -> None:
        self._expiry_handle = None
        self._on_expiry()
