"""IP and account allow lists with webhook notifications."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import aiohttp

from rpcgate.accounts import AccountId32, parse_account
from rpcgate.config import FirewallConfig, IpNetwork
from rpcgate.errors import InvalidIpNetwork

log = logging.getLogger(__name__)

Sender = Callable[[str, dict[str, Any]], Awaitable[None]]
Clock = Callable[[], datetime]

_EVENT_NAMES = frozenset(
    {
        "AccessGranted",
        "AccessDenied",
        "TemporaryAccessExpired",
        "RuleAdded",
        "WebhookRegistered",
    }
)


@dataclass(frozen=True)
class TemporaryAccessRecord:
    """A time-limited grant of access."""

    granted_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class WebhookEvent:
    """A firewall event delivered to webhooks as externally tagged JSON."""

    name: str
    payload: dict[str, Any]

    def __post_init__(self) -> None:
        if self.name not in _EVENT_NAMES:
            raise ValueError(f"unknown webhook event: {self.name}")

    def to_json(self) -> dict[str, Any]:
        return {self.name: dict(self.payload)}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def _post_json(url: str, payload: dict[str, Any]) -> None:
    async with aiohttp.ClientSession() as session:
        async with session.post(url, json=payload) as response:
            if 200 <= response.status < 300:
                log.debug("Webhook notification sent successfully to %s (%s)", url, response.status)
            else:
                log.warning("Webhook notification to %s failed with status %s", url, response.status)


def _to_network(value: IpNetwork | str) -> IpNetwork:
    if isinstance(value, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return value
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError as exc:
        raise InvalidIpNetwork(exc) from None


def _to_account(value: AccountId32 | str) -> AccountId32:
    return value if isinstance(value, AccountId32) else parse_account(value)


class Firewall:
    """Decides which IPs and accounts may use the gateway."""

    def __init__(
        self,
        config: FirewallConfig,
        webhook_urls: Iterable[str] = (),
        *,
        sender: Sender | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._allow_ips_config = frozenset(config.allow_ips)
        self._allow_accounts_config = frozenset(config.allow_accounts)
        self._allow_unrestricted_access = config.allow_unrestricted_access
        self._allow_ips_dynamic: set[IpNetwork] = set()
        self._allow_accounts_dynamic: set[AccountId32] = set()
        self._temporary_access: dict[AccountId32, TemporaryAccessRecord] = {}
        self._webhooks: list[str] = list(webhook_urls)
        self._sender: Sender = sender or _post_json
        self._clock: Clock = clock or _utc_now
        self._tasks: set[asyncio.Task[None]] = set()

    async def is_allowed(self, ip: str | ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
        """Check an IP: unrestricted, then static, then dynamic rules."""
        address = ipaddress.ip_address(ip)
        source = str(address)
        if self._allow_unrestricted_access:
            log.debug("Access granted to %s: unrestricted access enabled", source)
            await self._granted(source, "Unrestricted")
            return True
        if any(address in net for net in self._allow_ips_config):
            log.debug("Access granted to %s: static config allowlist", source)
            await self._granted(source, "Permanent (Config)")
            return True
        if any(address in net for net in self._allow_ips_dynamic):
            log.debug("Access granted to %s: dynamic allowlist", source)
            await self._granted(source, "Permanent (Dynamic)")
            return True
        log.debug("Access denied to %s: not in any allowlist", source)
        await self._notify(WebhookEvent("AccessDenied", {"source": source}))
        return False

    async def is_account_allowed(self, account: AccountId32 | str) -> bool:
        """Check an account: unrestricted, static, dynamic, then temporary access."""
        account = _to_account(account)
        source = str(account)
        if self._allow_unrestricted_access:
            await self._granted(source, "Unrestricted")
            return True
        if account in self._allow_accounts_config:
            await self._granted(source, "Permanent (Config)")
            return True
        if account in self._allow_accounts_dynamic:
            await self._granted(source, "Permanent (Dynamic)")
            return True
        if await self._check_temporary_access(account):
            await self._granted(source, "Temporary")
            return True
        log.debug("Account access denied for %s", source)
        return False

    async def add_ip_rule(self, network: IpNetwork | str) -> None:
        """Add a dynamic IP or CIDR rule; notifies only when it is new."""
        network = _to_network(network)
        if network in self._allow_ips_dynamic:
            return
        self._allow_ips_dynamic.add(network)
        log.debug("Added dynamic IP rule %s", network)
        await self._notify(WebhookEvent("RuleAdded", {"rule_type": "IP", "value": str(network)}))

    async def add_account_rule(self, account: AccountId32 | str) -> None:
        """Add a dynamic account rule; notifies only when it is new."""
        account = _to_account(account)
        if account in self._allow_accounts_dynamic:
            return
        self._allow_accounts_dynamic.add(account)
        log.debug("Added dynamic account rule %s", account)
        await self._notify(
            WebhookEvent("RuleAdded", {"rule_type": "Account", "value": str(account)})
        )

    async def grant_temporary_access(
        self, account: AccountId32 | str, record: TemporaryAccessRecord
    ) -> None:
        """Grant (or replace) temporary access for an account."""
        account = _to_account(account)
        log.debug("Granting temporary access to %s until %s", account, record.expires_at)
        self._temporary_access[account] = record

    async def _check_temporary_access(self, account: AccountId32) -> bool:
        record = self._temporary_access.get(account)
        if record is None:
            return False
        if record.expires_at > self._clock():
            return True
        log.debug("Temporary access expired for %s", account)
        del self._temporary_access[account]
        await self._notify(WebhookEvent("TemporaryAccessExpired", {"account": str(account)}))
        return False

    def cleanup_expired_access(self) -> None:
        """Drop every temporary access record that has expired."""
        now = self._clock()
        expired = [acc for acc, rec in self._temporary_access.items() if rec.expires_at <= now]
        for account in expired:
            log.debug("Cleaning up expired temporary access for %s", account)
            del self._temporary_access[account]

    async def add_webhook(self, url: str) -> None:
        """Register a webhook URL and announce it to all webhooks."""
        log.debug("Registering new webhook %s", url)
        self._webhooks.append(url)
        await self._notify(WebhookEvent("WebhookRegistered", {"url": url}))

    async def _granted(self, source: str, access_type: str) -> None:
        await self._notify(
            WebhookEvent("AccessGranted", {"source": source, "access_type": access_type})
        )

    async def _notify(self, event: WebhookEvent) -> None:
        if not self._webhooks:
            return
        payload = event.to_json()
        for url in list(self._webhooks):
            task = asyncio.create_task(self._deliver(url, payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, url: str, payload: dict[str, Any]) -> None:
        try:
            await self._sender(url, payload)
        except Exception as exc:  # delivery failures never affect the caller
            log.warning("Webhook notification to %s failed: %s", url, exc)