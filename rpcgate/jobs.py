"""Job handlers that change the firewall: allow access, paid access, webhooks."""

from __future__ import annotations

import enum
import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlsplit

from rpcgate.accounts import AccountId32, parse_account
from rpcgate.context import SecureRpcContext
from rpcgate.errors import AddressParseError, InvalidJobInput
from rpcgate.firewall import TemporaryAccessRecord

log = logging.getLogger(__name__)

ALLOW_ACCESS_JOB_ID = 0
PAY_FOR_ACCESS_JOB_ID = 1
REGISTER_WEBHOOK_JOB_ID = 2

_WEBHOOK_SCHEMES = frozenset({"http", "https"})


class AccessKind(enum.Enum):
    """What an access rule applies to."""

    IP = "Ip"
    ACCOUNT = "Account"


@dataclass(frozen=True)
class AccessTarget:
    """An IP/CIDR or an account address, still in text form."""

    kind: AccessKind
    value: str


@dataclass(frozen=True)
class AllowAccessInput:
    """Arguments of the allow-access job."""

    target: AccessTarget


@dataclass(frozen=True)
class PayForAccessInput:
    """Arguments of the pay-for-access job."""

    beneficiary: AccountId32
    duration_secs: int


@dataclass(frozen=True)
class RegisterWebhookInput:
    """Arguments of the register-webhook job."""

    url: str


async def allow_access(ctx: SecureRpcContext, job_input: AllowAccessInput) -> None:
    """Add a permanent IP/CIDR or account rule to the firewall."""
    target = job_input.target
    if target.kind is AccessKind.IP:
        try:
            network = ipaddress.ip_network(target.value, strict=False)
        except ValueError as exc:
            raise InvalidJobInput(f"Invalid IP/CIDR: {exc}") from None
        await ctx.firewall.add_ip_rule(network)
    else:
        try:
            account = parse_account(target.value)
        except AddressParseError:
            raise InvalidJobInput("Invalid AccountId32 format") from None
        await ctx.firewall.add_account_rule(account)


async def pay_for_access(
    ctx: SecureRpcContext, job_input: PayForAccessInput
) -> TemporaryAccessRecord:
    """Grant the beneficiary temporary access for the paid duration."""
    if job_input.duration_secs <= 0:
        raise InvalidJobInput("Duration must be positive")
    now = datetime.now(timezone.utc)
    record = TemporaryAccessRecord(
        granted_at=now,
        expires_at=now + timedelta(seconds=job_input.duration_secs),
    )
    await ctx.firewall.grant_temporary_access(job_input.beneficiary, record)
    log.info(
        "Granted temporary access via paid job to %s for %s seconds (expires %s)",
        job_input.beneficiary,
        job_input.duration_secs,
        record.expires_at,
    )
    return record


def _validate_webhook_url(text: str) -> None:
    try:
        parts = urlsplit(text)
        parts.port  # noqa: B018 - validates the port
    except ValueError as exc:
        raise InvalidJobInput(f"Invalid URL: {exc}") from None
    if not parts.scheme:
        raise InvalidJobInput("Invalid URL: relative URL without a base")
    if parts.scheme not in _WEBHOOK_SCHEMES:
        raise InvalidJobInput("Webhook URL must use http or https scheme")
    if not parts.hostname:
        raise InvalidJobInput("Invalid URL: empty host")


async def register_webhook(ctx: SecureRpcContext, job_input: RegisterWebhookInput) -> None:
    """Register an http(s) webhook for firewall event notifications."""
    _validate_webhook_url(job_input.url)
    await ctx.firewall.add_webhook(job_input.url)
    log.info("Registered new webhook %s", job_input.url)


def _field(payload: Any, key: str) -> Any:
    if not isinstance(payload, Mapping):
        raise InvalidJobInput("job arguments must be a mapping")
    if key not in payload:
        raise InvalidJobInput(f"missing field `{key}`")
    return payload[key]


def _decode_allow(payload: Any) -> AllowAccessInput:
    raw = _field(payload, "target")
    if not isinstance(raw, Mapping) or len(raw) != 1:
        raise InvalidJobInput("`target` must name exactly one variant")
    ((tag, value),) = raw.items()
    try:
        kind = AccessKind(tag)
    except ValueError:
        raise InvalidJobInput(f"unknown variant `{tag}`, expected `Ip` or `Account`") from None
    if not isinstance(value, str):
        raise InvalidJobInput(f"`{tag}` value must be a string")
    return AllowAccessInput(AccessTarget(kind, value))


def _decode_pay(payload: Any) -> PayForAccessInput:
    raw_account = _field(payload, "beneficiary")
    duration = _field(payload, "duration_secs")
    if isinstance(raw_account, AccountId32):
        beneficiary = raw_account
    elif isinstance(raw_account, str):
        try:
            beneficiary = parse_account(raw_account)
        except AddressParseError:
            raise InvalidJobInput("Invalid AccountId32 format") from None
    else:
        raise InvalidJobInput("`beneficiary` must be an account address")
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
        raise InvalidJobInput("`duration_secs` must be a non-negative integer")
    return PayForAccessInput(beneficiary, duration)


def _decode_webhook(payload: Any) -> RegisterWebhookInput:
    url = _field(payload, "url")
    if not isinstance(url, str):
        raise InvalidJobInput("`url` must be a string")
    return RegisterWebhookInput(url)


_JOBS = {
    ALLOW_ACCESS_JOB_ID: (_decode_allow, allow_access),
    PAY_FOR_ACCESS_JOB_ID: (_decode_pay, pay_for_access),
    REGISTER_WEBHOOK_JOB_ID: (_decode_webhook, register_webhook),
}


async def handle_job(ctx: SecureRpcContext, job_id: int, payload: Mapping[str, Any]) -> Any:
    """Decode a job call's arguments and run the handler registered for its id."""
    try:
        decode, handler = _JOBS[job_id]
    except KeyError:
        raise InvalidJobInput(f"unknown job id {job_id}") from None
    return await handler(ctx, decode(payload))