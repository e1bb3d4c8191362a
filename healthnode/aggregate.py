"""Recursive, cycle-safe aggregation of service health across peer nodes.

Every `/all` call carries `ids`, the node identifiers already on the path
from the root. A node that finds its own identifier there answers
204 No Content, so a traversal visits each node at most once per path no
matter how the peer lists loop back on each other. `ref` is the URL the
callee was reached by and becomes the `name` of its result node.
"""

import logging
from typing import Callable

import jsonschema
import requests

from healthnode.errors import HealthNodeError, UpstreamError

logger = logging.getLogger(__name__)

AGGREGATION_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$ref": "#/$defs/node",
    "$defs": {
        "node": {
            "type": "object",
            "required": ["name", "services", "monitors"],
            "properties": {
                "name": {"type": ["string", "null"]},
                "error": {"type": "string"},
                "services": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["name"],
                        "properties": {
                            "name": {"type": "string"},
                            "status": {"type": "string"},
                            "activeSince": {"type": "string"},
                            "errorCount": {"type": "integer"},
                            "host": {"type": "string"},
                            "error": {"type": "string"},
                        },
                    },
                },
                "monitors": {"type": "array", "items": {"$ref": "#/$defs/node"}},
            },
        },
    },
}


def parse_ids(value: str) -> list[str]:
    return [part for part in value.split(",") if part]


def failed_branch(peer: str, message: str) -> dict:
    return {"name": peer, "error": message, "services": [], "monitors": []}


class PeerClient:
    """Calls a peer's `/all` endpoint and validates the tree it returns."""

    def __init__(self, timeout: float = 15.0, session: requests.Session | None = None):
        self._timeout = timeout
        self._session = session or requests.Session()
        self._validator = jsonschema.Draft202012Validator(AGGREGATION_SCHEMA)

    def fetch_all(self, peer: str, ids: list[str]) -> dict | None:
        """Return the peer's result tree, or None if it was already visited."""
        url = peer.rstrip("/") + "/all"
        params = {"ref": peer, "ids": ",".join(ids)}
        try:
            resp = self._session.get(url, params=params, timeout=self._timeout,
                                     headers={"Connection": "close"})
        except requests.RequestException as e:
            raise UpstreamError(f"peer unreachable: {e.__class__.__name__}") from e

        if resp.status_code == 204:
            return None
        if resp.status_code != 200:
            raise UpstreamError(f"peer answered {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("peer sent invalid JSON") from e

        errors = [error.message for error in self._validator.iter_errors(data)]
        if errors:
            raise UpstreamError(f"peer sent malformed result: {errors[0]}")
        return data


class Aggregator:
    def __init__(self, node_id: str, checker, services_func: Callable[[], list[str]],
                 monitors_func: Callable[[], list[str]], client: PeerClient):
        self._node_id = node_id
        self._checker = checker
        self._services_func = services_func
        self._monitors_func = monitors_func
        self._client = client

    @property
    def node_id(self) -> str:
        return self._node_id

    def collect(self, ref: str | None, ids: list[str]) -> dict | None:
        """This node's services plus one nested result per peer.

        Returns None when this node is already on the path in *ids*. A peer
        that fails is reported as an error branch instead of failing the
        whole result.
        """
        if self._node_id in ids:
            logger.info("Node %s already visited, not recursing", self._node_id)
            return None

        visited = list(ids) + [self._node_id]
        host = self._checker.host()
        services = [self._service_entry(name, host) for name in self._services_func()]

        monitors = []
        for peer in self._monitors_func():
            try:
                branch = self._client.fetch_all(peer, visited)
            except UpstreamError as e:
                logger.warning("Aggregation branch %s failed: %s", peer, e.message)
                monitors.append(failed_branch(peer, e.message))
                continue
            if branch is not None:
                monitors.append(branch)

        return {"name": ref or None, "services": services, "monitors": monitors}

    def _service_entry(self, name: str, host: str) -> dict:
        try:
            return self._checker.status_of(name, host=host)
        except HealthNodeError as e:
            logger.warning("Status of %s failed: %s", name, e.message)
            return {"name": name, "error": e.message, "host": host}
