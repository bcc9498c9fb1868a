"""Command-line entry point that runs the RPC gateway."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys

from rpcgate.config import load_config
from rpcgate.context import SecureRpcContext, create_context
from rpcgate.errors import ConfigError
from rpcgate.rpc import start_rpc_gateway

log = logging.getLogger("rpcgate")

_LEVELS = ("debug", "info", "warning", "error", "critical")


def configure_logging(level: str = "debug") -> None:
    """Log the package at `level` and everything else at INFO, without timestamps."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"unknown log level: {level!r}")
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    logging.getLogger("rpcgate").setLevel(numeric)


async def _serve(ctx: SecureRpcContext) -> None:
    cleanup = asyncio.create_task(ctx.run_cleanup())
    try:
        await start_rpc_gateway(ctx)
    finally:
        cleanup.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secure-rpc-gateway",
        description="Firewalled HTTP and WebSocket gateway in front of an RPC node.",
    )
    parser.add_argument("--config", default="config.toml", help="path of the TOML configuration")
    parser.add_argument("--data-dir", default=None, help="service data directory")
    parser.add_argument("--log-level", default="debug", choices=_LEVELS)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Load the configuration and run the gateway until interrupted."""
    args = _parser().parse_args(argv)
    configure_logging(args.log_level)

    log.info("Loading service configuration from %s", args.config)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    log.info("Service configuration loaded: %s", config)

    try:
        ctx = create_context(config, args.data_dir)
    except OSError as exc:
        print(f"error: cannot create data directory: {exc}", file=sys.stderr)
        return 1

    log.info("Starting RPC gateway")
    try:
        asyncio.run(_serve(ctx))
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    log.info("Secure RPC Gateway finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())