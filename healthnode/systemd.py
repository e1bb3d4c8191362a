"""Init-system and journal lookups via systemctl and journalctl."""

import logging
import shutil
import subprocess
from datetime import datetime, timezone

from healthnode.errors import HealthNodeError, ToolUnavailable
from healthnode.models import UnitState

logger = logging.getLogger(__name__)

SHOW_PROPERTIES = (
    "LoadState",
    "ActiveState",
    "SubState",
    "ActiveEnterTimestamp",
    "StateChangeTimestamp",
)

SYSTEMD_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
SYSTEMD_TIMESTAMP_US_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def parse_show_output(text: str) -> dict[str, str]:
    """Parse `systemctl show` KEY=VALUE lines into a dict."""
    props: dict[str, str] = {}
    for line in text.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        props[key.strip()] = value.strip()
    return props


def parse_timestamp(value: str) -> datetime | None:
    """Parse a systemd timestamp property into an aware datetime.

    Accepts "@<epoch>", the default "Thu 2024-01-11 10:00:00 CET" form, which
    systemd prints in the local time zone, and the microsecond form printed
    with --timestamp=us+utc. "", "n/a" and "0" are None.
    """
    value = value.strip()
    if not value or value in ("n/a", "0"):
        return None
    if value.startswith("@"):
        return datetime.fromtimestamp(float(value[1:]), tz=timezone.utc)

    parts = value.split()
    if len(parts) < 3:
        return None
    fmt = SYSTEMD_TIMESTAMP_US_FORMAT if "." in parts[2] else SYSTEMD_TIMESTAMP_FORMAT
    try:
        naive = datetime.strptime(f"{parts[1]} {parts[2]}", fmt)
    except ValueError:
        logger.warning("Unparseable systemd timestamp %r", value)
        return None
    if len(parts) > 3 and parts[3] == "UTC":
        return naive.replace(tzinfo=timezone.utc)
    return naive.astimezone()


def _run(args: list[str], timeout: float) -> subprocess.CompletedProcess:
    if shutil.which(args[0]) is None:
        raise ToolUnavailable(f"{args[0]} is required")
    try:
        return subprocess.run(args, capture_output=True, text=True,
                              timeout=timeout, check=False)
    except subprocess.TimeoutExpired as e:
        raise HealthNodeError(f"{args[0]} timed out after {timeout:g}s") from e


class SystemdUnits:
    """Unit registration and state, read with `systemctl show`."""

    def __init__(self, systemctl: str = "systemctl", timeout: float = 10.0):
        self._systemctl = systemctl
        self._timeout = timeout

    def state(self, name: str) -> UnitState:
        args = [self._systemctl, "show", "--no-pager", "--timestamp=us+utc"]
        for prop in SHOW_PROPERTIES:
            args += ["-p", prop]
        args += ["--", name]

        result = _run(args, self._timeout)
        if result.returncode != 0:
            logger.warning("systemctl show %s exited %d: %s", name,
                           result.returncode, result.stderr.strip())
        props = parse_show_output(result.stdout)
        return UnitState(
            load_state=props.get("LoadState", "not-found"),
            active_state=props.get("ActiveState", ""),
            sub_state=props.get("SubState", ""),
            active_enter_timestamp=parse_timestamp(props.get("ActiveEnterTimestamp", "")),
            state_change_timestamp=parse_timestamp(props.get("StateChangeTimestamp", "")),
        )

    def is_registered(self, name: str) -> bool:
        return self.state(name).registered

    def activation_start(self, name: str) -> datetime | None:
        return self.state(name).active_enter_timestamp


class Journal:
    """Raw message text for a unit, read with `journalctl -o cat`."""

    def __init__(self, journalctl: str = "journalctl", timeout: float = 30.0):
        self._journalctl = journalctl
        self._timeout = timeout

    def read_since(self, name: str, since: datetime) -> str:
        args = [
            self._journalctl, "-u", name,
            "--since", f"@{since.timestamp():.6f}",
            "-o", "cat", "--no-pager", "-q",
        ]
        result = _run(args, self._timeout)
        if result.returncode != 0:
            raise HealthNodeError(
                f"journalctl failed for {name}: {result.stderr.strip() or result.returncode}"
            )
        logger.debug("Read %d bytes of journal for %s since %s",
                     len(result.stdout), name, since.isoformat())
        return result.stdout
