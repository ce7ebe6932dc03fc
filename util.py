# app/util.py
import re

from web3 import Web3

from errors import ClaimValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_HEX32_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def normalize_bytes32(value, what: str = "assertion ID") -> str:
    """
    Canonical form for assertion ids and tx hashes: 0x + 64 lowercase hex.
    Accepts raw bytes (e.g. HexBytes from a log) or a hex string.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ClaimValidationError(f"Invalid {what}: expected 32 bytes")
        return "0x" + bytes(value).hex()

    if not isinstance(value, str) or not _HEX32_RE.match(value.strip()):
        raise ClaimValidationError(f"Invalid {what}: {value!r}")
    return "0x" + value.strip().lower().removeprefix("0x")


def normalize_address(value: str) -> str:
    if not value or not Web3.is_address(value):
        raise ClaimValidationError(f"Invalid address: {value!r}")
    return Web3.to_checksum_address(value)


def clean_handle(handle: str) -> str:
    """Strip surrounding whitespace and a single leading '@'."""
    handle = handle.strip()
    return handle[1:] if handle.startswith("@") else handle
