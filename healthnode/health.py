"""Health classification of a systemd unit."""

import logging
from typing import Callable

from healthnode.errors import NotFound
from healthnode.models import (
    Completed,
    Failed,
    Health,
    Stable,
    Stopped,
    Transition,
    UnitState,
    Unstable,
)

logger = logging.getLogger(__name__)

SETTLED_STATES = ("active", "failed", "inactive")


def classify(state: UnitState, count_errors: Callable[[], int]) -> Health:
    """Map a unit's ActiveState/SubState (and its error count) to a Health.

    *count_errors* is only called for units that are active and running, so
    the error cache is not touched for any other state.
    """
    if state.active_state == "failed":
        return Failed()
    if state.active_state == "inactive":
        return Stopped()
    if state.active_state not in SETTLED_STATES:
        return Transition(state.active_enter_timestamp or state.state_change_timestamp)

    since = state.active_enter_timestamp
    if state.sub_state == "exited":
        return Completed(since)
    if state.sub_state != "running":
        return Transition(since)

    errors = count_errors()
    if errors == 0:
        return Stable(since)
    return Unstable(error_count=errors, active_since=since)


class HealthChecker:
    """Binds the unit lookup, error cache and host lookup for one node."""

    def __init__(self, units, error_cache, host_func: Callable[[], str]):
        self._units = units
        self._error_cache = error_cache
        self._host_func = host_func

    def require_unit(self, service: str) -> UnitState:
        state = self._units.state(service)
        if not state.registered:
            raise NotFound("service not found")
        return state

    def health_of(self, service: str, state: UnitState | None = None) -> Health:
        if state is None:
            state = self.require_unit(service)
        health = classify(state, lambda: self._error_cache.error_count(service))
        logger.debug("Service %s: %s/%s -> %s", service, state.active_state,
                     state.sub_state, health.status)
        return health

    def status_of(self, service: str, state: UnitState | None = None,
                  host: str | None = None) -> dict:
        """Wire form of a service's health: name, status, optional fields, host."""
        data = {"name": service}
        data.update(self.health_of(service, state).to_dict())
        data["host"] = host if host is not None else self._host_func()
        return data

    def errors_of(self, service: str) -> list[str]:
        return self._error_cache.errors_since(service)

    def host(self) -> str:
        return self._host_func()
