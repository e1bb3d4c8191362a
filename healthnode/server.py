"""Transports: a single connection on stdin/stdout, or a threaded TCP accept loop."""

import logging
import socket
import sys
import threading

from healthnode.errors import BadRequest
from healthnode.protocol import error_response, parse_request, write_response

logger = logging.getLogger(__name__)


def handle_connection(rfile, wfile, router) -> None:
    """Read one request, answer it, and return. The caller closes the connection."""
    try:
        request = parse_request(rfile)
    except BadRequest as e:
        write_response(wfile, error_response(e.status, e.message))
        return
    except (socket.timeout, ConnectionError) as e:
        logger.info("Connection dropped before request: %s", e)
        return
    if request is None:
        return

    logger.info("%s %s", request.method, request.target)
    try:
        response = router.handle(request)
    except Exception:
        logger.exception("Unhandled error for %s %s", request.method, request.target)
        response = error_response(500, "internal error")

    try:
        write_response(wfile, response)
    except (BrokenPipeError, ConnectionError) as e:
        logger.info("Client went away while answering %s: %s", request.target, e)


def serve_stdio(router) -> None:
    """Handle the single connection systemd (Accept=yes) or inetd passed on stdio."""
    handle_connection(sys.stdin.buffer, sys.stdout.buffer, router)


class HealthServer:
    """Standalone TCP server, one thread per connection."""

    def __init__(self, host: str, port: int, router, shutdown_event: threading.Event,
                 connection_timeout: float = 10.0):
        self._host = host
        self._port = port
        self._router = router
        self._shutdown_event = shutdown_event
        self._connection_timeout = connection_timeout
        self._sock = None
        self._server_address = None

    @property
    def server_address(self) -> tuple:
        """Return (host, port) the server is bound to. Useful when port=0."""
        return self._server_address

    @property
    def base_url(self) -> str:
        return "http://%s:%d" % self._server_address

    def start(self):
        """Bind, listen, and accept connections until shutdown."""
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.settimeout(1.0)
        self._sock.bind((self._host, self._port))
        self._sock.listen(16)

        self._server_address = self._sock.getsockname()
        logger.info("Server listening on %s:%d", *self._server_address)

        while not self._shutdown_event.is_set():
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            t = threading.Thread(target=self._handle_client, args=(conn, addr),
                                 daemon=True)
            t.start()

    def stop(self):
        """Signal shutdown and close the listen socket."""
        logger.info("Server shutting down...")
        self._shutdown_event.set()
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass

    def _handle_client(self, conn: socket.socket, addr: tuple):
        logger.debug("Client connected: %s:%d", addr[0], addr[1])
        conn.settimeout(self._connection_timeout)
        rfile = conn.makefile("rb")
        wfile = conn.makefile("wb")
        try:
            handle_connection(rfile, wfile, self._router)
        finally:
            rfile.close()
            try:
                wfile.close()
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            conn.close()
