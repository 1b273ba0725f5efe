"""Per-service alert state machine.

Each upstream service is either Healthy or Degraded. Error events open or
extend a streak; a success signal closes it. Notifications are throttled by a
cooldown window measured on a monotonic clock, so wall-clock jumps cannot
release or suppress an alert.
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from flight_proxy.schemas import AlertDecision, AlertState, ErrorEvent

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = timedelta(minutes=15)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertStateMachine:
    """
    Owns one AlertState per service and applies events to it atomically.

    Args:
        cooldown: minimum time between two alerts for the same service.
        clock: monotonic clock used for cooldown arithmetic (seconds).
        wall_clock: clock used for the human-readable timestamps.

    Examples:
        >>> machine = AlertStateMachine()
        >>> machine.observe("airlabs", ErrorEvent(kind="server_error")).should_notify
        True
    """

    def __init__(
        self,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ):
        self.cooldown = cooldown
        self._clock = clock
        self._wall_clock = wall_clock
        self._states: Dict[str, AlertState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, service: str) -> threading.Lock:
        with self._registry_lock:
            if service not in self._states:
                self._states[service] = AlertState()
                self._locks[service] = threading.Lock()
            return self._locks[service]

    def observe(self, service: str, event: Optional[ErrorEvent]) -> AlertDecision:
        """
        Apply one observation to a service.

        Args:
            service: upstream service identifier.
            event: the classified error, or None for a successful response.

        Returns:
            AlertDecision with `should_notify` and a copy of the resulting state.
        """
        with self._lock_for(service):
            state = self._states[service]
            if event is None:
                if state.in_error_state:
                    logger.info(
                        "%s recovered after %d consecutive error(s)", service, state.error_count
                    )
                    state.in_error_state = False
                    state.error_count = 0
                    state.first_error_time = None
                return AlertDecision(should_notify=False, snapshot=state.model_copy())

            now = self._clock()
            if not state.in_error_state:
                state.in_error_state = True
                state.error_count = 1
                state.first_error_time = self._wall_clock()
            else:
                state.error_count += 1

            should_notify = (
                state.last_alert_time is None
                or now - state.last_alert_time >= self.cooldown.total_seconds()
            )
            if should_notify:
                state.last_alert_time = now
                state.last_alert_at = self._wall_clock()
            else:
                logger.debug(
                    "%s error #%d (%s) within alert cooldown, not notifying",
                    service, state.error_count, event.kind.value,
                )
            return AlertDecision(should_notify=should_notify, snapshot=state.model_copy())

    def snapshot(self, service: str) -> AlertState:
        """Return a copy of one service's state (zero values if never observed)."""
        with self._lock_for(service):
            return self._states[service].model_copy()

    def snapshots(self) -> Dict[str, AlertState]:
        """Return copies of every tracked service's state."""
        with self._registry_lock:
            services = list(self._states)
        return {service: self.snapshot(service) for service in services}

    def track(self, service: str) -> None:
        """Register a service up front so it is reported before its first observation."""
        self._lock_for(service)
