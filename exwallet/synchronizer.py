"""Block synchronizer: scans confirmed blocks and sorts transactions by business."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from exwallet.batch_block import BatchBlock, BlockFallbackError
from exwallet.models import AddressType, BlockHeader, TransactionType, hex_to_address

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1


@dataclass
class Transaction:
    """A chain transaction that touches one of a business's addresses."""

    business_id: str
    block_number: int
    from_address: str
    to_address: str
    hash: str
    token_address: str = ""
    contract_wallet: str = ""
    tx_type: TransactionType = TransactionType.UNKNOWN


@dataclass
class BatchTransactions:
    """The transactions of one business found in one scanned batch of blocks."""

    block_height: int
    batch_id: str = ""
    transactions: list[Transaction] = field(default_factory=list)


def classify_transaction(
    from_exists: bool,
    from_type: AddressType | str | None,
    to_exists: bool,
    to_type: AddressType | str | None,
) -> TransactionType:
    """Classify a transfer by which side belongs to the business and how.

    Deposit: external to user. Withdraw: hot to external. Collection: user to hot.
    Hot to cold and cold to hot between the wallets. Anything else is unknown.
    """
    from_user = from_exists and from_type == AddressType.USER
    from_hot = from_exists and from_type == AddressType.HOT
    from_cold = from_exists and from_type == AddressType.COLD
    to_user = to_exists and to_type == AddressType.USER
    to_hot = to_exists and to_type == AddressType.HOT
    to_cold = to_exists and to_type == AddressType.COLD

    tx_type = TransactionType.UNKNOWN
    if not from_exists and to_user:
        tx_type = TransactionType.DEPOSIT
    if from_hot and not to_exists:
        tx_type = TransactionType.WITHDRAW
    if from_user and to_hot:
        tx_type = TransactionType.COLLECTION
    if from_hot and to_cold:
        tx_type = TransactionType.HOT2COLD
    if from_cold and to_hot:
        tx_type = TransactionType.COLD2HOT
    return tx_type


class BaseSynchronizer:
    """Periodically pulls confirmed headers and publishes per-business transaction batches.

    ``db`` provides the tables ``business`` (``query_business_list``), ``address``
    (``address_exist``) and ``blocks`` (``store_blocks``). Batches are published on
    ``business_channel`` and can be consumed with :meth:`iter_batches`.
    """

    def __init__(
        self,
        db: Any,
        rpc_client: Any,
        block_batch: BatchBlock,
        header_buffer_size: int,
        loop_interval: float,
    ) -> None:
        self.database = db
        self.rpc_client = rpc_client
        self.block_batch = block_batch
        self.header_buffer_size = header_buffer_size
        self.loop_interval = loop_interval
        self.business_channel: queue.Queue[dict[str, BatchTransactions]] = queue.Queue(maxsize=1)
        self._headers: list[BlockHeader] = []
        self._fallback_header: BlockHeader | None = None
        self._is_fallback = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._closed = threading.Event()

    @property
    def headers(self) -> list[BlockHeader]:
        """Headers of the batch still waiting to be processed."""
        return list(self._headers)

    @property
    def is_fallback(self) -> bool:
        return self._is_fallback

    @property
    def fallback_block_header(self) -> BlockHeader | None:
        return self._fallback_header

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        """Run :meth:`tick` every ``loop_interval`` seconds in a background thread."""
        if self._thread is not None:
            raise RuntimeError("already started")
        self._stop_event.clear()
        self._closed.clear()
        self._thread = threading.Thread(target=self._run, name="synchronizer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the loop and close the business channel."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join()
        self._thread = None
        logger.info("shutting down synchronizer produce...")
        self._closed.set()

    def iter_batches(self) -> Iterator[dict[str, BatchTransactions]]:
        """Yield published batches until the synchronizer is stopped and drained."""
        while True:
            try:
                yield self.business_channel.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self._closed.is_set():
                    return

    def _run(self) -> None:
        while not self._stop_event.wait(self.loop_interval):
            self.tick()

    def tick(self) -> None:
        """Fetch the next header batch unless one is pending, then process it."""
        if self._headers:
            logger.info("retrying previous batch")
        else:
            try:
                new_headers = self.block_batch.next_headers(self.header_buffer_size)
            except BlockFallbackError as exc:
                if not self._is_fallback:
                    logger.warning("found block fallback, start fallback task")
                    self._is_fallback = True
                    self._fallback_header = exc.header
                else:
                    logger.warning("the block fallback, fallback task handling it now")
            except Exception:
                logger.exception("error querying for headers")
            else:
                if not new_headers:
                    logger.warning("no new headers. syncer at head?")
                else:
                    self._headers = list(new_headers)
                    logger.info("find new block headers success, size %d", len(new_headers))

        try:
            self.process_batch(self._headers)
        except Exception:
            logger.exception("failed to process batch")
        else:
            self._headers = []

    def process_batch(self, headers: list[BlockHeader]) -> None:
        """Store the headers and publish their transactions grouped by business."""
        if not headers:
            return
        business_txs: dict[str, BatchTransactions] = {}
        blocks: list[dict[str, Any]] = []

        for header in headers:
            logger.info("sync block data, height %d", header.number)
            blocks.append(
                {
                    "hash": header.hash,
                    "parent_hash": header.parent_hash,
                    "number": header.number,
                    "timestamp": header.timestamp,
                }
            )
            tx_list = self.rpc_client.get_block_info(header.number)
            business_list = self.database.business.query_business_list() or []

            for business in business_list:
                uid = business["business_uid"]
                found = [
                    tx
                    for tx in (self._match(uid, header, raw) for raw in tx_list)
                    if tx is not None
                ]
                if not found:
                    continue
                batch = business_txs.get(uid)
                if batch is None:
                    business_txs[uid] = BatchTransactions(
                        block_height=header.number, transactions=found
                    )
                else:
                    batch.block_height = header.number
                    batch.transactions.extend(found)

        logger.info("store %d block headers", len(blocks))
        self.database.blocks.store_blocks(blocks)
        if business_txs:
            self._publish(business_txs)

    def _match(
        self, uid: str, header: BlockHeader, raw: Mapping[str, Any]
    ) -> Transaction | None:
        to_address = hex_to_address(raw.get("to", ""))
        from_address = hex_to_address(raw.get("from", ""))
        to_exists, to_type = self.database.address.address_exist(uid, to_address)
        from_exists, from_type = self.database.address.address_exist(uid, from_address)
        if not to_exists and not from_exists:
            return None
        tx_type = classify_transaction(from_exists, from_type, to_exists, to_type)
        logger.info(
            "found %s transaction %s from %s to %s",
            tx_type.value,
            raw.get("hash", ""),
            from_address,
            to_address,
        )
        return Transaction(
            business_id=uid,
            block_number=header.number,
            from_address=raw.get("from", ""),
            to_address=raw.get("to", ""),
            hash=raw.get("hash", ""),
            token_address=raw.get("token_address", ""),
            contract_wallet=raw.get("contract_wallet", ""),
            tx_type=tx_type,
        )

    def _publish(self, batch: dict[str, BatchTransactions]) -> None:
        while True:
            if self._stop_event.is_set():
                raise RuntimeError("synchronizer stopped before the batch was consumed")
            try:
                self.business_channel.put(batch, timeout=_POLL_SECONDS)
                return
            except queue.Full:
                continue


def create_synchronizer(
    db: Any,
    rpc_client: Any,
    starting_height: int,
    confirmations: int,
    blocks_step: int,
    loop_interval: float,
) -> BaseSynchronizer:
    """Build a synchronizer resuming from the stored head, the configured height or the chain head."""
    from_header = db.blocks.latest_blocks()
    if from_header is not None:
        logger.info("sync block from stored %d %s", from_header.number, from_header.hash)
    elif starting_height > 0:
        from_header = rpc_client.get_block_header(starting_height)
    else:
        from_header = rpc_client.get_block_header(None)
    return BaseSynchronizer(
        db,
        rpc_client,
        BatchBlock(rpc_client, from_header, confirmations),
        blocks_step,
        loop_interval,
    )