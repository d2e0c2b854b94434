"""Bech32 address handling for account and consensus addresses."""

from __future__ import annotations

import hashlib
from typing import Iterable, Sequence

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_INDEX = {char: value for value, char in enumerate(CHARSET)}
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LENGTH = 6

MAX_LENGTH = 1023
MAX_ADDRESS_BYTES = 255
ACCOUNT_PREFIX = "cosmos"
CONSENSUS_PREFIX = "cosmosvalcons"
ED25519_PUBKEY_SIZE = 32


def _polymod(values: Iterable[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for bit, generator in enumerate(_GENERATORS):
            if (top >> bit) & 1:
                chk ^= generator
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: Sequence[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + list(data) + [0] * _CHECKSUM_LENGTH) ^ 1
    return [(polymod >> 5 * (5 - step)) & 31 for step in range(_CHECKSUM_LENGTH)]


def _convert_bits(data: Iterable[int], from_bits: int, to_bits: int, *, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError(f"invalid data value {value}")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & max_value)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (acc << (to_bits - bits)) & max_value:
        raise ValueError("invalid padding in bech32 data")
    return result


def _check_hrp(hrp: str) -> None:
    if not hrp:
        raise ValueError("empty human readable part")
    if any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise ValueError(f"invalid character in human readable part: {hrp!r}")


def bech32_encode(hrp: str, data: bytes) -> str:
    """Encode raw bytes as a bech32 string with the given human readable part."""
    hrp = hrp.lower()
    _check_hrp(hrp)
    values = _convert_bits(data, 8, 5, pad=True)
    encoded = values + _create_checksum(hrp, values)
    return hrp + "1" + "".join(CHARSET[value] for value in encoded)


def bech32_decode(address: str) -> tuple[str, bytes]:
    """Decode a bech32 string into its human readable part and raw bytes."""
    if len(address) > MAX_LENGTH:
        raise ValueError(f"bech32 string too long: {len(address)}")
    if any(ord(c) < 33 or ord(c) > 126 for c in address):
        raise ValueError("invalid character in bech32 string")
    if address.lower() != address and address.upper() != address:
        raise ValueError("bech32 string has mixed case")
    address = address.lower()
    separator = address.rfind("1")
    if separator < 1 or separator + _CHECKSUM_LENGTH + 1 > len(address):
        raise ValueError("invalid bech32 separator position")
    hrp, encoded = address[:separator], address[separator + 1 :]
    try:
        values = [_CHARSET_INDEX[char] for char in encoded]
    except KeyError as err:
        raise ValueError(f"invalid bech32 character {err.args[0]!r}") from None
    if _polymod(_hrp_expand(hrp) + values) != 1:
        raise ValueError("invalid bech32 checksum")
    return hrp, bytes(_convert_bits(values[:-_CHECKSUM_LENGTH], 5, 8, pad=False))


def account_address_from_bech32(address: str, prefix: str = ACCOUNT_PREFIX) -> bytes:
    """Return the bytes of an account address, checking its prefix and format."""
    if not address.strip():
        raise ValueError("empty address string is not allowed")
    hrp, data = bech32_decode(address)
    if hrp != prefix:
        raise ValueError(f"invalid Bech32 prefix; expected {prefix}, got {hrp}")
    if not data:
        raise ValueError("addresses cannot be empty")
    if len(data) > MAX_ADDRESS_BYTES:
        raise ValueError(f"address max length is {MAX_ADDRESS_BYTES}, got {len(data)}")
    return data


def _is_account_address(address: str, prefix: str) -> bool:
    try:
        account_address_from_bech32(address, prefix)
    except ValueError:
        return False
    return True


def filter_non_account_addresses(addresses: Iterable[str], prefix: str = ACCOUNT_PREFIX) -> list[str]:
    """Keep only the addresses that are valid account addresses."""
    return [address for address in addresses if _is_account_address(address, prefix)]


def consensus_address(pubkey: bytes, prefix: str = CONSENSUS_PREFIX) -> str:
    """Return the bech32 consensus address of an ed25519 public key."""
    if len(pubkey) != ED25519_PUBKEY_SIZE:
        raise ValueError(f"ed25519 public key must be {ED25519_PUBKEY_SIZE} bytes, got {len(pubkey)}")
    return bech32_encode(prefix, hashlib.sha256(bytes(pubkey)).digest()[:20])