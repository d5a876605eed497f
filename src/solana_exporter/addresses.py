from __future__ import annotations

from solders.pubkey import Pubkey

from solana_exporter.errors import AddressParseError


def parse_address(value: str) -> Pubkey:
    """Parse a base58 account address.

    Raises AddressParseError for anything that is not a 32-byte base58 key.
    """
    s = str(value or "").strip()
    if not s:
        raise AddressParseError("address_empty", "address must be a non-empty string")
    try:
        return Pubkey.from_string(s)
    except ValueError as e:
        raise AddressParseError("address_invalid", f"could not parse address {s!r}", str(e)) from e


def is_valid_address(value: str) -> bool:
    try:
        parse_address(value)
    except AddressParseError:
        return False
    return True
