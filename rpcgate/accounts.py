"""32-byte account identifiers and their SS58 text form."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from rpcgate.errors import AddressParseError

DEFAULT_SS58_PREFIX = 42
_RESERVED_PREFIXES = frozenset({46, 47})
_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: value for value, char in enumerate(_ALPHABET)}
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def _b58encode(data: bytes) -> str:
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_ALPHABET[remainder])
    leading = len(data) - len(data.lstrip(b"\0"))
    return "1" * leading + "".join(reversed(digits))


def _b58decode(text: str) -> bytes:
    number = 0
    for char in text:
        try:
            number = number * 58 + _INDEX[char]
        except KeyError:
            raise ValueError(f"invalid base58 character {char!r}") from None
    leading = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    return b"\0" * leading + body


def _checksum(payload: bytes) -> bytes:
    return hashlib.blake2b(b"SS58PRE" + payload, digest_size=64).digest()[:2]


@dataclass(frozen=True)
class AccountId32:
    """An opaque 32-byte account identifier."""

    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != 32:
            raise ValueError(f"account id must be 32 bytes, got {len(self.data)}")

    def to_ss58(self, prefix: int = DEFAULT_SS58_PREFIX) -> str:
        """Encode the account as an SS58 address with the given network prefix."""
        if 0 <= prefix < 64:
            head = bytes([prefix])
        elif 64 <= prefix < 16384:
            head = bytes(
                [
                    ((prefix & 0b1111_1100) >> 2) | 0b0100_0000,
                    (prefix >> 8) | ((prefix & 0b11) << 6),
                ]
            )
        else:
            raise ValueError(f"SS58 prefix out of range: {prefix}")
        payload = head + self.data
        return _b58encode(payload + _checksum(payload))

    def __str__(self) -> str:
        return self.to_ss58()


def _from_ss58(text: str) -> AccountId32:
    try:
        raw = _b58decode(text)
    except ValueError:
        raise AddressParseError("invalid ss58 address.") from None
    if len(raw) < 2:
        raise AddressParseError("invalid ss58 address.")
    first = raw[0]
    if first < 64:
        prefix, prefix_len = first, 1
    elif first < 128:
        lower = ((first << 2) | (raw[1] >> 6)) & 0xFF
        upper = raw[1] & 0b0011_1111
        prefix, prefix_len = lower | (upper << 8), 2
    else:
        raise AddressParseError("invalid ss58 address.")
    if len(raw) != prefix_len + 32 + 2:
        raise AddressParseError("invalid ss58 address.")
    if _checksum(raw[:-2]) != raw[-2:]:
        raise AddressParseError("invalid ss58 address.")
    if prefix in _RESERVED_PREFIXES:
        raise AddressParseError("invalid ss58 address.")
    return AccountId32(raw[prefix_len:-2])


def parse_account(value: str) -> AccountId32:
    """Parse an account from 64 hex digits (optionally 0x-prefixed) or SS58."""
    stripped = value
    while stripped.startswith("0x"):
        stripped = stripped[2:]
    if len(stripped) == 64:
        if not set(stripped) <= _HEX_DIGITS:
            raise AddressParseError("invalid hex address.")
        return AccountId32(bytes.fromhex(stripped))
    return _from_ss58(value)