"""Log block parser - splits raw journal text into ERROR/FATAL blocks."""

import re
from datetime import datetime
from typing import Generator, Iterable

HEADER_PATTERN = re.compile(
    r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})(?:\.(\d+))?\|([A-Z]+)\|"
)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

ERROR_LEVELS = ("ERROR", "FATAL")


def header_level(line: str) -> str | None:
    """Return the LEVEL of a header line, or None if the line is not a header."""
    match = HEADER_PATTERN.match(line)
    return match.group(3) if match else None


def is_header(line: str) -> bool:
    return HEADER_PATTERN.match(line) is not None


def header_timestamp(match: re.Match) -> datetime | None:
    """Naive timestamp of a matched header, or None if the date is impossible."""
    try:
        ts = datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    fraction = match.group(2)
    if fraction:
        ts = ts.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    return ts


def _at_or_after(match: re.Match, since: datetime | None) -> bool:
    if since is None:
        return True
    ts = header_timestamp(match)
    if ts is None:
        return True
    # Header timestamps carry no zone; read them as local time.
    if since.tzinfo is not None:
        ts = ts.astimezone()
    return ts >= since


def _finish(lines: list[str]) -> str:
    while len(lines) > 1 and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines)


def iter_blocks(lines: Iterable[str] | str,
                since: datetime | None = None) -> Generator[str, None, None]:
    """Yield each ERROR/FATAL block found in *lines*.

    A block starts at an ERROR or FATAL header and runs up to the next header
    of any level or the end of input. Lines before the first header are
    dropped. When *since* is given, blocks whose header is older are skipped.
    """
    if isinstance(lines, str):
        lines = lines.split("\n")

    current: list[str] | None = None
    for raw in lines:
        line = raw.rstrip("\n")
        match = HEADER_PATTERN.match(line)
        if match:
            if current is not None:
                yield _finish(current)
            current = None
            if match.group(3) in ERROR_LEVELS and _at_or_after(match, since):
                current = [line]
        elif current is not None:
            current.append(line)

    if current is not None:
        yield _finish(current)
