"""health-node: answer systemd service health queries for this node and its peers."""

import argparse
import logging
import os
import signal
import sys
import threading
from functools import partial

from healthnode.aggregate import Aggregator, PeerClient
from healthnode.config import Config, load_config, load_yaml_config, node_identity, read_list
from healthnode.error_cache import ErrorCache
from healthnode.health import HealthChecker
from healthnode.netinfo import outbound_ipv4
from healthnode.proxy import Forwarder
from healthnode.router import Router
from healthnode.server import HealthServer, serve_stdio
from healthnode.systemd import Journal, SystemdUnits

LOG_FORMAT = "%(asctime)s [health-node] %(levelname)s %(name)s %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="health-node",
        description="Report systemd service health, locally or across peer nodes.",
    )
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["stdio", "serve"],
        default="stdio",
        help="stdio: answer one request on stdin/stdout (socket activation); "
             "serve: run a standalone TCP server (default: stdio)",
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("HEALTH_NODE_CONFIG"),
        help="Path to YAML config file",
    )
    parser.add_argument("--host", help="Listen address for serve mode")
    parser.add_argument("--port", type=int, help="Listen port for serve mode")
    parser.add_argument("--cache-dir", dest="cache_dir",
                        help="Directory for error caches and lock files")
    parser.add_argument("--services-file", dest="services_file",
                        help="File listing monitored units, one per line")
    parser.add_argument("--monitors-file", dest="monitors_file",
                        help="File listing peer node URLs, one per line")
    parser.add_argument("--log-level", dest="log_level",
                        help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser


def create_router(config: Config, units=None, journal=None) -> Router:
    """Wire the production collaborators (systemctl, journalctl, requests) together."""
    units = units or SystemdUnits()
    journal = journal or Journal()
    cache = ErrorCache(
        config.cache_dir,
        units,
        journal,
        lock_wait_seconds=config.lock_wait_seconds,
        lock_stale_seconds=config.lock_stale_seconds,
        lock_poll_interval=config.lock_poll_interval,
    )
    checker = HealthChecker(units, cache, outbound_ipv4)
    services = partial(read_list, config.services_file)
    monitors = partial(read_list, config.monitors_file)
    aggregator = Aggregator(
        node_identity(config),
        checker,
        services,
        monitors,
        PeerClient(timeout=config.peer_timeout),
    )
    return Router(
        checker,
        aggregator,
        Forwarder(timeout=config.proxy_timeout),
        services,
        monitors,
        index_file=config.index_file,
    )


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)

    # Loading the config logs too, so start at INFO until its level is known.
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    config = load_config(args, load_yaml_config(args.config))
    logging.getLogger().setLevel(config.log_level)
    logger = logging.getLogger(__name__)

    router = create_router(config)

    if args.mode == "stdio":
        serve_stdio(router)
        return

    shutdown_event = threading.Event()
    server = HealthServer(config.host, config.port, router, shutdown_event,
                          connection_timeout=config.connection_timeout)

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        server.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting health-node on %s:%d (cache=%s, services=%s, monitors=%s)",
                config.host, config.port, config.cache_dir,
                config.services_file, config.monitors_file)
    server.start()


if __name__ == "__main__":
    main()
