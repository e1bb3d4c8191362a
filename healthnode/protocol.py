"""Minimal HTTP/1.1 framing: one GET request per connection, then close.

Only the request line matters. Header lines are read and discarded up to the
blank terminator and no body is read. Responses always carry
`Connection: close` and are delimited by closing the connection.
"""

import json
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Iterable
from urllib.parse import parse_qsl

from healthnode.errors import BadRequest

logger = logging.getLogger(__name__)

MAX_LINE = 8192
MAX_HEADERS = 100

JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"


@dataclass(frozen=True)
class Request:
    method: str
    target: str
    version: str = "HTTP/1.1"

    @property
    def path(self) -> str:
        return self.target.split("?", 1)[0]

    @property
    def query(self) -> str:
        return self.target.split("?", 1)[1] if "?" in self.target else ""

    def param(self, key: str) -> str:
        """URL-decoded value of the first *key* pair, "" when absent or empty."""
        for k, v in parse_qsl(self.query, keep_blank_values=True):
            if k == key:
                return v
        return ""


def strip_query_param(target: str, key: str) -> str:
    """Drop every *key* pair from the target, keeping the other raw pairs in order."""
    if "?" not in target:
        return target
    path, qs = target.split("?", 1)
    keep = [part for part in qs.split("&")
            if part and part.split("=", 1)[0] != key]
    if not keep:
        return path
    return path + "?" + "&".join(keep)


def _readline(rfile) -> bytes:
    line = rfile.readline(MAX_LINE + 1)
    if len(line) > MAX_LINE:
        raise BadRequest("request line too long")
    return line


def parse_request(rfile) -> Request | None:
    """Read one request from a binary stream. None if the peer sent nothing."""
    line = _readline(rfile)
    if not line:
        return None

    parts = line.decode("latin-1").strip().split()
    if len(parts) < 2:
        raise BadRequest("bad request")

    for _ in range(MAX_HEADERS):
        header = _readline(rfile)
        if header in (b"", b"\n", b"\r\n"):
            break
    else:
        raise BadRequest("too many headers")

    version = parts[2] if len(parts) > 2 else "HTTP/1.0"
    return Request(method=parts[0], target=parts[1], version=version)


@dataclass
class Response:
    status: int = 200
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes | Iterable[bytes] = b""
    reason: str | None = None

    def header(self, name: str) -> str | None:
        for k, v in self.headers:
            if k.lower() == name.lower():
                return v
        return None


def reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown"


def json_response(data, status: int = 200,
                  extra_headers: Iterable[tuple[str, str]] = ()) -> Response:
    headers = [("Content-Type", JSON_CONTENT_TYPE), ("Connection", "close")]
    headers.extend(extra_headers)
    body = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return Response(status=status, headers=headers, body=body)


def error_response(status: int, message: str,
                   extra_headers: Iterable[tuple[str, str]] = ()) -> Response:
    return json_response({"error": message}, status, extra_headers)


def text_response(chunks: Iterable[bytes], status: int = 200) -> Response:
    headers = [("Content-Type", TEXT_CONTENT_TYPE), ("Connection", "close")]
    return Response(status=status, headers=headers, body=chunks)


def write_response(wfile, response: Response) -> None:
    reason = response.reason or reason_phrase(response.status)
    head = [f"HTTP/1.1 {response.status} {reason}\r\n"]
    for name, value in response.headers:
        head.append(f"{name}: {value}\r\n")
    head.append("\r\n")
    wfile.write("".join(head).encode("latin-1"))

    if isinstance(response.body, (bytes, bytearray)):
        wfile.write(response.body)
    else:
        for chunk in response.body:
            wfile.write(chunk)
    wfile.flush()
