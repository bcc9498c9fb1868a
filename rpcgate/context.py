"""Shared service state handed to the gateway and to job handlers."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rpcgate.config import ServiceConfig
from rpcgate.firewall import Firewall

log = logging.getLogger(__name__)

DATA_DIR_NAME = ".secure-rpc-gateway"
CLEANUP_INTERVAL_SECS = 60.0


def default_data_dir() -> Path:
    """Directory used for service data when none is configured."""
    return Path.home() / DATA_DIR_NAME


@dataclass
class SecureRpcContext:
    """Configuration, data directory and firewall of a running service."""

    service_config: ServiceConfig
    data_dir: Path
    firewall: Firewall
    admin_pair: Any = None

    @property
    def config(self) -> ServiceConfig:
        return self.service_config

    async def run_cleanup(self, interval: float = CLEANUP_INTERVAL_SECS) -> None:
        """Drop expired temporary access now and then every `interval` seconds, forever."""
        if interval <= 0:
            raise ValueError(f"cleanup interval must be positive, got {interval}")
        while True:
            self.firewall.cleanup_expired_access()
            await asyncio.sleep(interval)


def create_context(
    service_config: ServiceConfig, data_dir: str | os.PathLike[str] | None = None
) -> SecureRpcContext:
    """Create the data directory if needed and build a context with a fresh firewall."""
    directory = Path(data_dir) if data_dir is not None else default_data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    firewall = Firewall(service_config.firewall, service_config.webhooks.event_urls)
    log.debug("Service context created with data directory %s", directory)
    return SecureRpcContext(
        service_config=service_config,
        data_dir=directory,
        firewall=firewall,
    )