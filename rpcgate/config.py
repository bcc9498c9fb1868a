"""Service configuration: TOML file plus SECURE_RPC__ environment overrides."""

from __future__ import annotations

import ipaddress
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from rpcgate.accounts import AccountId32, parse_account
from rpcgate.errors import AddressParseError, ConfigError

IpNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

DEFAULT_MAX_BODY_SIZE_BYTES = 1024 * 1024 * 10
DEFAULT_REQUEST_TIMEOUT_SECS = 30
ENV_PREFIX = "secure_rpc__"
ENV_SEPARATOR = "__"

_TRUE = frozenset({"1", "true", "on", "yes"})
_FALSE = frozenset({"0", "false", "off", "no"})
_HOST_SCHEMES = frozenset({"http", "https", "ws", "wss", "ftp"})


@dataclass(frozen=True)
class RpcConfig:
    """Where the gateway listens and where it forwards requests."""

    listen_addr: tuple[str, int]
    proxy_to_url: str
    max_body_size_bytes: int = DEFAULT_MAX_BODY_SIZE_BYTES
    request_timeout_secs: int = DEFAULT_REQUEST_TIMEOUT_SECS


@dataclass(frozen=True)
class FirewallConfig:
    """Static allow lists."""

    allow_ips: frozenset[IpNetwork] = field(default_factory=frozenset)
    allow_accounts: frozenset[AccountId32] = field(default_factory=frozenset)
    allow_unrestricted_access: bool = False


@dataclass(frozen=True)
class WebhookConfig:
    """Webhook URLs notified of firewall events."""

    event_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceConfig:
    """The complete service configuration."""

    rpc: RpcConfig
    firewall: FirewallConfig
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        try:
            result = int(value.strip())
        except ValueError:
            raise ConfigError(f"invalid integer for `{name}`: {value!r}") from None
    else:
        raise ConfigError(f"invalid type for `{name}`: expected an integer")
    if result < 0:
        raise ConfigError(f"invalid value for `{name}`: must not be negative")
    return result


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ConfigError(f"invalid boolean for `{name}`: {value!r}")


def _as_str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"invalid type for `{name}`: expected a sequence of strings")
    return value


def _as_table(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"invalid type for `{name}`: expected a table")
    return value


def _require(table: Mapping[str, Any], key: str) -> Any:
    if key not in table:
        raise ConfigError(f"missing field `{key}`")
    return table[key]


def _parse_socket_addr(value: Any) -> tuple[str, int]:
    if not isinstance(value, str):
        raise ConfigError("invalid type for `listen_addr`: expected a string")
    host, sep, port_text = value.rpartition(":")
    if not sep:
        raise ConfigError(f"invalid socket address syntax: {value!r}")
    try:
        if host.startswith("[") and host.endswith("]"):
            address = ipaddress.IPv6Address(host[1:-1])
        else:
            address = ipaddress.IPv4Address(host)
        if not port_text.isdigit():
            raise ValueError(port_text)
        port = int(port_text)
        if port > 65535:
            raise ValueError(port_text)
    except ValueError:
        raise ConfigError(f"invalid socket address syntax: {value!r}") from None
    return str(address), port


def _parse_url(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"invalid type for `{name}`: expected a URL string")
    try:
        parts = urlsplit(value)
        parts.port  # noqa: B018 - validates the port
    except ValueError as exc:
        raise ConfigError(f"invalid URL {value!r}: {exc}") from None
    if not parts.scheme or (parts.scheme.lower() in _HOST_SCHEMES and not parts.hostname):
        raise ConfigError(f"invalid URL {value!r}")
    return value


def _parse_network(text: str) -> IpNetwork:
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError as exc:
        raise ConfigError(f"Invalid IP/CIDR '{text}': {exc}") from None


def _parse_config_account(text: str) -> AccountId32:
    try:
        return parse_account(text)
    except AddressParseError:
        raise ConfigError(f"Invalid AccountId32: {text}") from None


def _parse_rpc(table: Mapping[str, Any]) -> RpcConfig:
    return RpcConfig(
        listen_addr=_parse_socket_addr(_require(table, "listen_addr")),
        proxy_to_url=_parse_url(_require(table, "proxy_to_url"), "proxy_to_url"),
        max_body_size_bytes=_as_int(
            table.get("max_body_size_bytes", DEFAULT_MAX_BODY_SIZE_BYTES),
            "max_body_size_bytes",
        ),
        request_timeout_secs=_as_int(
            table.get("request_timeout_secs", DEFAULT_REQUEST_TIMEOUT_SECS),
            "request_timeout_secs",
        ),
    )


def _parse_firewall(table: Mapping[str, Any]) -> FirewallConfig:
    ips = _as_str_list(table.get("allow_ips", []), "allow_ips")
    accounts = _as_str_list(table.get("allow_accounts", []), "allow_accounts")
    return FirewallConfig(
        allow_ips=frozenset(_parse_network(text) for text in ips),
        allow_accounts=frozenset(_parse_config_account(text) for text in accounts),
        allow_unrestricted_access=_as_bool(
            table.get("allow_unrestricted_access", False), "allow_unrestricted_access"
        ),
    )


def _parse_webhooks(table: Mapping[str, Any]) -> WebhookConfig:
    urls = _as_str_list(table.get("event_urls", []), "event_urls")
    return WebhookConfig(event_urls=tuple(_parse_url(url, "event_urls") for url in urls))


def parse_service_config(data: Mapping[str, Any]) -> ServiceConfig:
    """Build a ServiceConfig from an already-decoded mapping."""
    root = _as_table(data, "config")
    return ServiceConfig(
        rpc=_parse_rpc(_as_table(_require(root, "rpc"), "rpc")),
        firewall=_parse_firewall(_as_table(_require(root, "firewall"), "firewall")),
        webhooks=_parse_webhooks(_as_table(root.get("webhooks", {}), "webhooks")),
    )


def _merge_environment(data: dict[str, Any], environ: Mapping[str, str]) -> None:
    for key, value in environ.items():
        lowered = key.lower()
        if not lowered.startswith(ENV_PREFIX):
            continue
        path = lowered[len(ENV_PREFIX):].split(ENV_SEPARATOR)
        if not all(path):
            continue
        table = data
        for part in path[:-1]:
            child = table.get(part)
            if not isinstance(child, dict):
                child = {}
                table[part] = child
            table = child
        table[path[-1]] = value


def load_config(path: str | os.PathLike[str], environ: Mapping[str, str] | None = None) -> ServiceConfig:
    """Load a TOML configuration file and apply SECURE_RPC__ environment overrides."""
    file_path = Path(path)
    try:
        with file_path.open("rb") as handle:
            data = tomllib.load(handle)
    except FileNotFoundError:
        raise ConfigError(f"configuration file {str(file_path)!r} not found") from None
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"{file_path}: {exc}") from None
    _merge_environment(data, os.environ if environ is None else environ)
    return parse_service_config(data)