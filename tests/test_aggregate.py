"""Integration tests for recursive aggregation across live nodes."""

import socket

import jsonschema
import pytest
import requests

from conftest import HOST_IP, FakeJournal, FakeUnits, build_router
from healthnode.aggregate import AGGREGATION_SCHEMA, PeerClient, failed_branch, parse_ids
from healthnode.errors import UpstreamError
from healthnode.protocol import json_response


def _node(tmp_path, start_server, node_id, services=(), host=HOST_IP):
    """Start a node; returns (running server, its monitors list to fill in)."""
    units = FakeUnits()
    for name in services:
        units.add(name)
    monitors: list[str] = []
    router = build_router(tmp_path, units, FakeJournal(), node_id=node_id,
                          services=list(services), monitors=monitors, host=host)
    return start_server(router), monitors


def _all(node, **params):
    return requests.get(f"{node.url}/all", params=params, timeout=10)


def _names(tree):
    """Every node label in a result tree, depth first."""
    yield tree["name"]
    for child in tree["monitors"]:
        yield from _names(child)


class StaticRouter:
    def __init__(self, response):
        self._response = response

    def handle(self, request):
        return self._response


class TestParseIds:
    def test_empty(self):
        assert parse_ids("") == []

    def test_split(self):
        assert parse_ids("a,b,,c") == ["a", "b", "c"]


class TestOnePeer:
    def test_root_with_one_stable_peer(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a", ["web.service"])
        b, _ = _node(tmp_path, start_server, "node-b", ["db.service"], host="10.0.0.9")
        a_monitors.append(b.url)

        resp = _all(a)
        assert resp.status_code == 200
        result = resp.json()
        assert result["name"] is None
        assert [s["name"] for s in result["services"]] == ["web.service"]
        assert len(result["monitors"]) == 1

        peer = result["monitors"][0]
        assert peer["name"] == b.url
        assert peer["services"] == [{
            "name": "db.service",
            "status": "stable",
            "activeSince": "2024-01-11T10:00:00Z",
            "host": "10.0.0.9",
        }]
        assert peer["monitors"] == []

    def test_peers_in_configured_order(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a")
        b, _ = _node(tmp_path, start_server, "node-b")
        c, _ = _node(tmp_path, start_server, "node-c")
        a_monitors.extend([c.url, b.url])
        assert [m["name"] for m in _all(a).json()["monitors"]] == [c.url, b.url]


class TestCycleSafety:
    def test_two_node_cycle(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a", ["web.service"])
        b, b_monitors = _node(tmp_path, start_server, "node-b", ["db.service"])
        a_monitors.append(b.url)
        b_monitors.append(a.url)

        result = _all(a).json()
        assert list(_names(result)) == [None, b.url]
        assert result["monitors"][0]["monitors"] == []

    def test_self_loop(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a")
        a_monitors.append(a.url)
        assert _all(a).json()["monitors"] == []

    def test_three_node_ring(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a")
        b, b_monitors = _node(tmp_path, start_server, "node-b")
        c, c_monitors = _node(tmp_path, start_server, "node-c")
        a_monitors.append(b.url)
        b_monitors.append(c.url)
        c_monitors.append(a.url)

        assert list(_names(_all(a).json())) == [None, b.url, c.url]

    def test_ids_accumulate_along_path(self, tmp_path, start_server):
        b, _ = _node(tmp_path, start_server, "node-b")
        assert _all(b, ids="node-a,node-b").status_code == 204
        assert _all(b, ids="node-a").status_code == 200


class TestBranchIsolation:
    def test_unreachable_peer_reported_not_fatal(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a", ["web.service"])
        b, _ = _node(tmp_path, start_server, "node-b")
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        dead = "http://127.0.0.1:%d" % sock.getsockname()[1]
        sock.close()
        a_monitors.extend([dead, b.url])

        resp = _all(a)
        assert resp.status_code == 200
        monitors = resp.json()["monitors"]
        assert monitors[0]["name"] == dead
        assert "error" in monitors[0]
        assert monitors[0]["services"] == []
        assert monitors[1]["name"] == b.url
        assert "error" not in monitors[1]

    def test_malformed_peer_body(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a")
        bogus = start_server(StaticRouter(json_response({"unexpected": True})))
        a_monitors.append(bogus.url)

        branch = _all(a).json()["monitors"][0]
        assert branch["name"] == bogus.url
        assert branch["error"].startswith("peer sent malformed result")

    def test_peer_error_status(self, tmp_path, start_server):
        a, a_monitors = _node(tmp_path, start_server, "node-a")
        broken = start_server(StaticRouter(json_response({"error": "x"}, 500)))
        a_monitors.append(broken.url)
        assert _all(a).json()["monitors"][0]["error"] == "peer answered 500"


class TestPeerClient:
    def test_sends_ref_and_ids(self, tmp_path, start_server):
        seen = []

        class Recorder:
            def handle(self, request):
                seen.append((request.param("ref"), request.param("ids")))
                return json_response({"name": request.param("ref"),
                                      "services": [], "monitors": []})

        node = start_server(Recorder())
        data = PeerClient(timeout=5).fetch_all(node.url + "/", ["a", "b"])
        assert seen == [(node.url + "/", "a,b")]
        assert data["name"] == node.url + "/"

    def test_unreachable_raises_upstream(self):
        with pytest.raises(UpstreamError):
            PeerClient(timeout=1).fetch_all("http://127.0.0.1:1", ["a"])


class TestSchema:
    def test_failed_branch_is_valid(self):
        jsonschema.validate(failed_branch("http://x", "boom"), AGGREGATION_SCHEMA)

    def test_nested_tree_is_valid(self):
        tree = {
            "name": None,
            "services": [{"name": "a", "status": "unstable", "errorCount": 2,
                          "activeSince": "2024-01-11T10:00:00Z", "host": "10.0.0.1"}],
            "monitors": [{"name": "http://b", "services": [], "monitors": []}],
        }
        jsonschema.validate(tree, AGGREGATION_SCHEMA)

    def test_missing_monitors_rejected(self):
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate({"name": None, "services": []}, AGGREGATION_SCHEMA)
