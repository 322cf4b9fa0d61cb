"""Client for the chains-union RPC service."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from exwallet.models import BlockHeader, hex_to_hash

logger = logging.getLogger(__name__)

NETWORK = "mainnet"
ERROR_CODE = "ERROR"

_DECIMAL = re.compile(r"[+-]?[0-9]+")


class ChainsUnionError(Exception):
    """The chains-union service reported a failure or an unusable reply."""


class ChainsUnionRpcClient:
    """Chain-specific wrapper over a chains-union service stub.

    The service object provides ``convert_address``, ``get_block_header_by_number``,
    ``get_block_by_number``, ``get_tx_by_hash`` and ``send_tx``; each takes a
    request mapping and returns a response mapping carrying a ``code``.
    """

    def __init__(self, service: Any, chain_name: str) -> None:
        logger.info("new chains-union rpc client for %s", chain_name)
        self.service = service
        self.chain_name = chain_name

    @staticmethod
    def _checked(response: Mapping[str, Any] | None, what: str) -> Mapping[str, Any]:
        if response is None:
            raise ChainsUnionError(f"{what}: empty response")
        if response.get("code") == ERROR_CODE:
            raise ChainsUnionError(f"{what}: {response.get('msg', '')}")
        return response

    def export_address_by_public_key(self, type_or_version: str, public_key: str) -> str:
        """Convert a public key to an address; an empty string on failure."""
        request = {"chain": self.chain_name, "type": type_or_version, "public_key": public_key}
        try:
            response = self.service.convert_address(request)
        except Exception:
            logger.exception("convert address failed")
            return ""
        if response is None or response.get("code") == ERROR_CODE:
            logger.error("convert address failed")
            return ""
        return response.get("address", "")

    def get_block_header(self, number: int | None = None) -> BlockHeader:
        """Fetch the header at ``number``, or the latest one when it is None."""
        request = {
            "chain": self.chain_name,
            "network": NETWORK,
            "height": 0 if number is None else number,
        }
        response = self._checked(
            self.service.get_block_header_by_number(request), "get block header"
        )
        raw = response.get("block_header") or {}
        number_text = str(raw.get("number", ""))
        if not _DECIMAL.fullmatch(number_text):
            raise ChainsUnionError(f"invalid block number: {number_text!r}")
        return BlockHeader(
            hash=hex_to_hash(raw.get("hash", "")),
            parent_hash=hex_to_hash(raw.get("parent_hash", "")),
            number=int(number_text),
            timestamp=int(raw.get("time", 0)),
        )

    def get_block_info(self, block_number: int) -> list[Mapping[str, Any]]:
        """Return the transactions of the block at ``block_number``."""
        request = {"chain": self.chain_name, "height": block_number, "view_tx": True}
        response = self._checked(self.service.get_block_by_number(request), "get block")
        return list(response.get("transactions") or [])

    def get_transaction_by_hash(self, tx_hash: str) -> Mapping[str, Any] | None:
        """Return the transaction message for ``tx_hash``."""
        request = {"chain": self.chain_name, "network": NETWORK, "hash": tx_hash}
        response = self._checked(self.service.get_tx_by_hash(request), "get transaction")
        return response.get("tx")

    def send_tx(self, raw_tx: str) -> str:
        """Broadcast a signed raw transaction and return its hash."""
        logger.info("send transaction %s on %s", raw_tx, self.chain_name)
        request = {"chain": self.chain_name, "network": NETWORK, "raw_tx": raw_tx}
        response = self._checked(self.service.send_tx(request), "send tx")
        return response.get("tx_hash", "")