"""Typed records: unit state, health variants, and the persisted cache entry."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

JSON_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def to_json_date(ts: datetime) -> str:
    """Render an aware datetime as an ISO-8601 UTC string for the wire."""
    return ts.astimezone(timezone.utc).strftime(JSON_DATE_FORMAT)


def _dump_ts(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


def _load_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class UnitState:
    """The subset of `systemctl show` properties the classifier needs."""

    load_state: str
    active_state: str
    sub_state: str
    active_enter_timestamp: datetime | None = None
    state_change_timestamp: datetime | None = None

    @property
    def registered(self) -> bool:
        return self.load_state not in ("", "not-found")


@dataclass(frozen=True)
class Health:
    """Base of the six health variants. Each subclass sets `status`."""

    status: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status}
        active_since = getattr(self, "active_since", None)
        if active_since is not None:
            data["activeSince"] = to_json_date(active_since)
        return data


@dataclass(frozen=True)
class Failed(Health):
    status: ClassVar[str] = "failed"


@dataclass(frozen=True)
class Stopped(Health):
    status: ClassVar[str] = "stopped"


@dataclass(frozen=True)
class Transition(Health):
    status: ClassVar[str] = "transition"
    active_since: datetime | None = None


@dataclass(frozen=True)
class Completed(Health):
    status: ClassVar[str] = "completed"
    active_since: datetime | None = None


@dataclass(frozen=True)
class Stable(Health):
    status: ClassVar[str] = "stable"
    active_since: datetime | None = None


@dataclass(frozen=True)
class Unstable(Health):
    status: ClassVar[str] = "unstable"
    error_count: int
    active_since: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errorCount"] = self.error_count
        return data


@dataclass
class ErrorCacheEntry:
    service: str
    activation: datetime | None = None
    watermark: datetime | None = None
    blocks: list[str] = field(default_factory=list)

    def reset(self, activation: datetime | None) -> None:
        self.activation = activation
        self.watermark = None
        self.blocks = []

    def extend(self, blocks) -> int:
        """Append blocks not already cached, in first-seen order. Returns how many were new."""
        seen = set(self.blocks)
        added = 0
        for block in blocks:
            if block in seen:
                continue
            seen.add(block)
            self.blocks.append(block)
            added += 1
        return added

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "activation": _dump_ts(self.activation),
            "watermark": _dump_ts(self.watermark),
            "blocks": list(self.blocks),
        }

    @classmethod
    def from_dict(cls, service: str, d: dict) -> "ErrorCacheEntry":
        return cls(
            service=service,
            activation=_load_ts(d.get("activation")),
            watermark=_load_ts(d.get("watermark")),
            blocks=list(d.get("blocks", [])),
        )
