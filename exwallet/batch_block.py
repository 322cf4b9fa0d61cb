"""Batched, confirmation-aware retrieval of block headers."""

from __future__ import annotations

import logging
from typing import Any

from exwallet.models import BlockHeader
from exwallet.rpcclient import ChainsUnionError

logger = logging.getLogger(__name__)


class BatchBlockAheadOfProviderError(Exception):
    """The last traversed header is beyond the confirmed chain head."""

    def __init__(self) -> None:
        super().__init__("the BatchBlock's internal state is ahead of the provider")


class BlockFallbackError(Exception):
    """A fetched header does not link to its predecessor: the chain reorganised."""

    def __init__(self, header: BlockHeader) -> None:
        super().__init__("the block fallback, fallback handle it now")
        self.header = header


class BatchBlock:
    """Walks the chain forward in batches, staying ``confirmation_depth`` behind the head."""

    def __init__(
        self,
        rpc_client: Any,
        from_header: BlockHeader | None = None,
        confirmation_depth: int = 0,
    ) -> None:
        self._rpc = rpc_client
        self._latest_header: BlockHeader | None = None
        self._last_traversed_header = from_header
        self._confirmation_depth = confirmation_depth

    @property
    def latest_header(self) -> BlockHeader | None:
        return self._latest_header

    @property
    def last_traversed_header(self) -> BlockHeader | None:
        return self._last_traversed_header

    def next_headers(self, max_size: int) -> list[BlockHeader]:
        """Return up to ``max_size`` confirmed headers following the last traversed one.

        Raises BlockFallbackError when the fetched headers do not chain together,
        and BatchBlockAheadOfProviderError when the traversal is past the head.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        latest = self._rpc.get_block_header(None)
        if latest is None:
            raise ChainsUnionError("latest header unreported")
        self._latest_header = latest

        end_height = latest.number - self._confirmation_depth
        if end_height < 0:
            return []

        last = self._last_traversed_header
        if last is None:
            next_height = 0
        elif last.number == end_height:
            return []
        elif last.number > end_height:
            raise BatchBlockAheadOfProviderError()
        else:
            next_height = last.number + 1

        end_height = min(end_height, next_height + max_size - 1)

        headers: list[BlockHeader] = []
        previous = last
        for height in range(next_height, end_height + 1):
            header = self._rpc.get_block_header(height)
            if previous is not None and header.parent_hash != previous.hash:
                logger.warning(
                    "header %d parent %s does not match previous hash %s",
                    header.number,
                    header.parent_hash,
                    previous.hash,
                )
                raise BlockFallbackError(header)
            headers.append(header)
            previous = header

        if not headers:
            return []
        self._last_traversed_header = headers[-1]
        return headers