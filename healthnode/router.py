"""Request routing: validation, dispatch to local handlers, proxy or aggregation."""

import logging
import os
from typing import Callable

from healthnode.aggregate import Aggregator, parse_ids
from healthnode.errors import BadRequest, CacheBusy, HealthNodeError, NotFound
from healthnode.protocol import (
    HTML_CONTENT_TYPE,
    Request,
    Response,
    error_response,
    json_response,
    text_response,
)
from healthnode.proxy import MONITOR_PARAM, Forwarder

logger = logging.getLogger(__name__)

ROOT_PATHS = ("", "/")
RETRY_AFTER_SECONDS = 1


class Router:
    def __init__(self, checker, aggregator: Aggregator, forwarder: Forwarder,
                 services_func: Callable[[], list[str]],
                 monitors_func: Callable[[], list[str]],
                 index_file: str = "index.html"):
        self._checker = checker
        self._aggregator = aggregator
        self._forwarder = forwarder
        self._services_func = services_func
        self._monitors_func = monitors_func
        self._index_file = index_file
        self._routes = {
            "/services": self._services,
            "/list": self._services,
            "/monitors": self._monitors,
            "/host": self._host,
            "/status": self._status,
            "/errors": self._errors,
            "/all": self._all,
        }

    def handle(self, request: Request) -> Response:
        """Answer one request. Every HealthNodeError becomes a JSON error body."""
        try:
            return self._dispatch(request)
        except CacheBusy as e:
            return error_response(e.status, e.message,
                                  [("Retry-After", str(RETRY_AFTER_SECONDS))])
        except HealthNodeError as e:
            return error_response(e.status, e.message)

    def _dispatch(self, request: Request) -> Response:
        if request.method != "GET":
            raise BadRequest("bad request")

        path = request.path
        if path in ROOT_PATHS:
            return self._index()

        monitor = request.param(MONITOR_PARAM)
        if monitor:
            return self._forwarder.forward(monitor, request.target)

        handler = self._routes.get(path)
        if handler is None:
            raise NotFound("not found")
        return handler(request)

    def _required_service(self, request: Request) -> tuple:
        service = request.param("service")
        if not service:
            raise BadRequest("service must be specified")
        return service, self._checker.require_unit(service)

    def _index(self) -> Response:
        if not os.path.isfile(self._index_file):
            raise NotFound("index.html not exists")
        with open(self._index_file, "rb") as f:
            body = f.read()
        headers = [
            ("Content-Type", HTML_CONTENT_TYPE),
            ("Content-Length", str(len(body))),
            ("Connection", "close"),
        ]
        return Response(status=200, headers=headers, body=body)

    def _services(self, request: Request) -> Response:
        return json_response(self._services_func())

    def _monitors(self, request: Request) -> Response:
        return json_response(self._monitors_func())

    def _host(self, request: Request) -> Response:
        return json_response({"host": self._checker.host()})

    def _status(self, request: Request) -> Response:
        service, state = self._required_service(request)
        return json_response(self._checker.status_of(service, state))

    def _errors(self, request: Request) -> Response:
        service, _ = self._required_service(request)
        blocks = self._checker.errors_of(service)
        if request.param("format") == "text":
            return text_response(f"{block}\n\n".encode("utf-8") for block in blocks)
        return json_response(blocks)

    def _all(self, request: Request) -> Response:
        result = self._aggregator.collect(request.param("ref") or None,
                                          parse_ids(request.param("ids")))
        if result is None:
            return Response(status=204, headers=[("Connection", "close")])
        return json_response(result)
