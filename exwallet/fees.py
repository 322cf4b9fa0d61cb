"""Parsing of fee quotes returned by the chain service."""

from __future__ import annotations

import re
from dataclasses import dataclass

_DECIMAL = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


@dataclass(frozen=True)
class FeeInfo:
    gas_price: int
    gas_tip_cap: int
    multiplier: int
    multiplied_tip: int
    max_priority_fee: int


def _parse_decimal(text: str, what: str) -> int:
    if not _DECIMAL.fullmatch(text):
        raise ValueError(f"invalid {what}: {text}")
    return int(text)


def parse_fast_fee(fast_fee: str) -> FeeInfo:
    """Parse a ``"<base fee>|<tip cap>|*<multiplier>"`` quote.

    The multiplied tip is ``tip * multiplier``; the maximum fee is
    ``base fee + 2 * multiplied tip``.
    """
    parts = fast_fee.split("|")
    if len(parts) != 3:
        raise ValueError(f"invalid fast fee format: {fast_fee}")
    base_text, tip_text, multiplier_text = parts

    gas_price = _parse_decimal(base_text, "gas price")
    gas_tip_cap = _parse_decimal(tip_text, "gas tip cap")

    stripped = multiplier_text[1:] if multiplier_text.startswith("*") else multiplier_text
    if not _DECIMAL.fullmatch(stripped):
        raise ValueError(f"invalid multiplier: {multiplier_text}")
    multiplier = int(stripped)
    if not _INT64_MIN <= multiplier <= _INT64_MAX:
        raise ValueError(f"invalid multiplier: {multiplier_text}")

    multiplied_tip = gas_tip_cap * multiplier
    return FeeInfo(
        gas_price=gas_price,
        gas_tip_cap=gas_tip_cap,
        multiplier=multiplier,
        multiplied_tip=multiplied_tip,
        max_priority_fee=multiplied_tip * 2 + gas_price,
    )