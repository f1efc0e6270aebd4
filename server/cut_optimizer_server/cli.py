"""Command-line entry point.

Every flag falls back to an environment variable, then to the documented default.
"""

from __future__ import annotations

import argparse
import ipaddress
import logging
import os
from typing import Sequence

from . import DEFAULT_MAX_CONTENT_LENGTH, DEFAULT_MAX_REQUESTS, DEFAULT_TIMEOUT_S, create_app
from .core.dispatcher import POOL_KINDS

logger = logging.getLogger("cut_optimizer_server")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3030

LOG_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    env = os.environ
    parser = argparse.ArgumentParser(
        prog="cut-optimizer-server",
        description="A cut optimizer server for optimizing rectangular cut pieces from sheet goods.",
    )
    parser.add_argument("-i", "--ip", default=env.get("HOST", DEFAULT_HOST), help="IP address to listen on")
    parser.add_argument("-p", "--port", type=int, default=int(env.get("PORT", DEFAULT_PORT)), help="Port to listen on")
    parser.add_argument(
        "--max-content-length",
        type=int,
        default=int(env.get("MAX_CONTENT_LENGTH", DEFAULT_MAX_CONTENT_LENGTH)),
        help="Maximum length of request body in bytes",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(env.get("REQUEST_TIMEOUT_S", DEFAULT_TIMEOUT_S)),
        help="Maximum time in seconds a request may take (0 disables)",
    )
    parser.add_argument(
        "--max-requests",
        type=int,
        default=int(env.get("MAX_REQUESTS", DEFAULT_MAX_REQUESTS)),
        help="Maximum number of requests processed concurrently",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=int(env["WORKERS"]) if env.get("WORKERS") else None,
        help="Size of the optimizer worker pool (default: CPU count)",
    )
    parser.add_argument(
        "--worker-pool",
        choices=POOL_KINDS,
        default=env.get("WORKER_POOL", "process"),
        help="Run optimizations in worker processes or threads",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Silence all log output")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Verbose logging mode (-v, -vv)"
    )
    return parser


def configure_logging(quiet: bool, verbose: int) -> None:
    if quiet:
        logging.disable(logging.CRITICAL)
        return
    logging.basicConfig(
        level=LOG_LEVELS[min(verbose, len(LOG_LEVELS) - 1)],
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # The app writes its own access log line.
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse flags, build the app and serve until killed."""
    opt = build_parser().parse_args(argv)
    configure_logging(opt.quiet, opt.verbose)

    try:
        ipaddress.ip_address(opt.ip)
    except ValueError:
        logger.error("Invalid socket address %s:%s", opt.ip, opt.port)
        return 1

    app = create_app(
        {
            "MAX_CONTENT_LENGTH": opt.max_content_length,
            "REQUEST_TIMEOUT_S": opt.timeout,
            "MAX_REQUESTS": opt.max_requests,
            "WORKERS": opt.workers,
            "WORKER_POOL": opt.worker_pool,
        }
    )
    logger.info("Listening on %s:%s", opt.ip, opt.port)
    app.run(host=opt.ip, port=opt.port, threaded=True)
    return 0
