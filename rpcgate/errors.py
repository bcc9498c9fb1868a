"""Exception hierarchy for the RPC gateway."""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for every error the gateway raises."""

    template = "{}"

    def __init__(self, detail: Any) -> None:
        self.detail = detail
        super().__init__(self.template.format(detail))


class ConfigError(GatewayError):
    """The service configuration could not be loaded or is invalid."""

    template = "Configuration error: {}"


class InvalidIpNetwork(GatewayError):
    """A string is neither an IP address nor a CIDR block."""

    template = "Invalid IP address or CIDR: {}"


class AddressParseError(GatewayError):
    """An account address could not be parsed."""

    template = "Address parsing error: {}"


class AccessDeniedIp(GatewayError):
    """The firewall refused a client IP address."""

    template = "Access denied for IP: {}"


class AccessDeniedAccount(GatewayError):
    """The firewall refused an account."""

    template = "Access denied for Account: {}"


class WebhookFailed(GatewayError):
    """Delivering a webhook notification failed."""

    template = "Webhook sending failed: {}"


class InvalidJobInput(GatewayError):
    """A job was called with arguments that cannot be used."""

    template = "Invalid job input: {}"