"""Value types shared by the chain client, the scanner and the wallet service."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from enum import Enum

ADDRESS_LENGTH = 20
HASH_LENGTH = 32

_HEX_DIGITS = re.compile(r"[0-9a-fA-F]*")
_JSON_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _hex_to_fixed(value: str, size: int) -> str:
    """Decode a loosely formatted hex string into a fixed-size, 0x-prefixed value.

    The prefix is optional, an odd digit count is padded on the left, decoding
    stops at the first invalid pair, longer input keeps its rightmost bytes and
    shorter input is zero-padded on the left.
    """
    digits = value[2:] if value[:2] in ("0x", "0X") else value
    if len(digits) % 2:
        digits = "0" + digits
    valid = _HEX_DIGITS.match(digits).group()
    raw = bytes.fromhex(valid[: len(valid) - len(valid) % 2])[-size:]
    return "0x" + raw.rjust(size, b"\0").hex()


def hex_to_address(value: str) -> str:
    """Normalise a hex string to a lower-case 20-byte address."""
    return _hex_to_fixed(value, ADDRESS_LENGTH)


def hex_to_hash(value: str) -> str:
    """Normalise a hex string to a lower-case 32-byte hash."""
    return _hex_to_fixed(value, HASH_LENGTH)


ZERO_ADDRESS = hex_to_address("")
ZERO_HASH = hex_to_hash("")


class TransactionType(str, Enum):
    UNKNOWN = "unknow"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    COLLECTION = "collection"
    HOT2COLD = "hot2cold"
    COLD2HOT = "cold2hot"


class AddressType(str, Enum):
    USER = "user"
    HOT = "hot"
    COLD = "cold"


class TxStatus(str, Enum):
    CREATE_UNSIGNED = "create_unsigned"
    SIGNED = "signed"
    BROADCASTED = "broadcasted"
    WALLET_DONE = "wallet_done"
    SUCCESS = "success"


class TokenType(str, Enum):
    ETH = "ETH"
    ERC20 = "ERC20"


def parse_transaction_type(value: str) -> TransactionType:
    """Return the transaction type named by ``value``."""
    try:
        return TransactionType(value)
    except ValueError:
        raise ValueError(f"invalid transaction type: {value!r}") from None


def parse_address_type(value: str) -> AddressType:
    """Return the address type named by ``value``."""
    try:
        return AddressType(value)
    except ValueError:
        raise ValueError(f"invalid address type: {value!r}") from None


@dataclass(frozen=True)
class BlockHeader:
    hash: str
    parent_hash: str
    number: int
    timestamp: int = 0


@dataclass
class Eip1559DynamicFeeTx:
    """EIP-1559 transaction parameters as sent to the chain service."""

    chain_id: str
    nonce: int
    from_address: str
    to_address: str
    gas_limit: int
    max_fee_per_gas: str
    max_priority_fee_per_gas: str
    amount: str
    contract_address: str

    def to_json(self) -> bytes:
        """Compact UTF-8 JSON with HTML-sensitive characters escaped."""
        text = json.dumps(asdict(self), separators=(",", ":"), ensure_ascii=False)
        for char, escape in _JSON_HTML_ESCAPES.items():
            text = text.replace(char, escape)
        return text.encode("utf-8")