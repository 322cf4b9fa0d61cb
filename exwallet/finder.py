"""Transaction finder: consumes scanned batches and records what each business cares about."""

from __future__ import annotations

import logging
import queue
import random
import re
import threading
import time
import uuid
from typing import Any, Callable, Mapping

from exwallet.models import (
    ZERO_HASH,
    TransactionType,
    TxStatus,
    hex_to_address,
    hex_to_hash,
)
from exwallet.synchronizer import BaseSynchronizer, BatchTransactions, Transaction

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1
_DECIMAL = re.compile(r"[+-]?[0-9]+")
_PLACEHOLDER = "0x00"

INTERNAL_TYPES = frozenset(
    {TransactionType.COLLECTION, TransactionType.COLD2HOT, TransactionType.HOT2COLD}
)


def _parse_decimal(text: Any) -> int | None:
    value = "" if text is None else str(text)
    return int(value) if _DECIMAL.fullmatch(value) else None


def _now() -> int:
    return int(time.time())


class Finder:
    """Handles the per-business batches published by a synchronizer.

    Deposits are stored and their confirmations updated; withdrawals and internal
    transfers already on record are marked done; balances are adjusted and every
    transaction is written to the flow table. The synchronizer's ``database``
    provides ``transaction()`` and the tables ``business``, ``deposits``,
    ``withdraws``, ``internals``, ``balances`` and ``transactions``.
    """

    def __init__(
        self,
        synchronizer: BaseSynchronizer,
        confirmations: int,
        shutdown: Callable[[BaseException], None] | None = None,
        retry_attempts: int = 10,
        retry_min: float = 1.0,
        retry_max: float = 20.0,
        retry_jitter: float = 0.25,
    ) -> None:
        self.synchronizer = synchronizer
        self.confirmations = confirmations & 0xFF
        self._shutdown = shutdown
        self.retry_attempts = retry_attempts
        self.retry_min = retry_min
        self.retry_max = retry_max
        self.retry_jitter = retry_jitter
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    @property
    def database(self) -> Any:
        return self.synchronizer.database

    @property
    def rpc_client(self) -> Any:
        return self.synchronizer.rpc_client

    def start(self) -> None:
        """Consume batches in a background thread."""
        if self._thread is not None:
            raise RuntimeError("already started")
        self._stop_event.clear()
        self._error = None
        self._thread = threading.Thread(target=self._run, name="finder", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop consuming; raise if the consumer ended on an error."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._error is not None:
            error, self._error = self._error, None
            raise RuntimeError(f"fail to execute finder tasks: {error}") from error

    def _run(self) -> None:
        logger.info("handle deposit task start")
        channel = self.synchronizer.business_channel
        while not self._stop_event.is_set():
            try:
                batch = channel.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self.synchronizer.closed:
                    return
                continue
            logger.info("business batch with %d entries", len(batch))
            try:
                self.handle_batch(batch)
            except Exception as exc:
                logger.exception("failed to handle batch, stopping finder")
                self._error = exc
                if self._shutdown is not None:
                    self._shutdown(RuntimeError(f"fail to execute finder tasks: {exc}"))
                return

    def handle_batch(self, batch: Mapping[str, BatchTransactions]) -> None:
        """Record every business's transactions from one scanned batch."""
        business_list = self.database.business.query_business_list()
        if not business_list:
            raise RuntimeError("failed to query business list")

        for business in business_list:
            uid = business["business_uid"]
            entry = batch.get(uid)
            if entry is None:
                continue
            logger.info(
                "handle business %s at height %d, %d transactions",
                uid,
                entry.block_height,
                len(entry.transactions),
            )
            flows: list[dict[str, Any]] = []
            deposits: list[dict[str, Any]] = []
            withdraws: list[dict[str, Any]] = []
            internals: list[dict[str, Any]] = []
            balances: list[dict[str, Any]] = []

            for tx in entry.transactions:
                tx_msg = self.rpc_client.get_transaction_by_hash(tx.hash)
                if tx_msg is None:
                    raise RuntimeError(
                        f"GetTransactionByHash txItem is nil: TxHash = {tx.hash}"
                    )
                balances.append(
                    {
                        "from_address": hex_to_address(tx.from_address),
                        "to_address": hex_to_address(tx_msg.get("to", "")),
                        "token_address": hex_to_address(tx_msg.get("contract_address", "")),
                        "balance": _parse_decimal(tx_msg.get("value")),
                        "tx_type": tx.tx_type,
                    }
                )
                flows.append(self.build_transaction(tx, tx_msg))

                if tx.tx_type is TransactionType.DEPOSIT:
                    deposits.append(self.handle_deposit(tx, tx_msg))
                elif tx.tx_type is TransactionType.WITHDRAW:
                    withdraws.append(self.handle_withdraw(tx, tx_msg))
                elif tx.tx_type in INTERNAL_TYPES:
                    internals.append(self.handle_internal_tx(tx, tx_msg))

            self._with_retry(
                lambda: self._persist(
                    uid, entry.block_height, flows, deposits, withdraws, internals, balances
                )
            )

    def _persist(
        self,
        uid: str,
        block_height: int,
        flows: list[dict[str, Any]],
        deposits: list[dict[str, Any]],
        withdraws: list[dict[str, Any]],
        internals: list[dict[str, Any]],
        balances: list[dict[str, Any]],
    ) -> None:
        db = self.database
        with db.transaction():
            if deposits:
                logger.info("store %d deposits", len(deposits))
                db.deposits.store_deposits(uid, deposits)
            db.deposits.update_deposits_confirms(uid, block_height, self.confirmations)
            if balances:
                logger.info("update %d balances", len(balances))
                db.balances.update_or_create(uid, balances)
            if withdraws:
                db.withdraws.update_withdraw_status_by_tx_hash(
                    uid, TxStatus.WALLET_DONE, withdraws
                )
            if internals:
                db.internals.update_internal_status_by_tx_hash(
                    uid, TxStatus.WALLET_DONE, internals
                )
            if flows:
                db.transactions.store_transactions(uid, flows, len(flows))

    def _with_retry(self, operation: Callable[[], None]) -> None:
        for attempt in range(self.retry_attempts):
            try:
                operation()
                return
            except Exception:
                if attempt == self.retry_attempts - 1:
                    raise
                logger.exception("unable to persist batch, retrying")
            delay = min(self.retry_min * 2**attempt, self.retry_max)
            delay += random.uniform(0, self.retry_jitter)
            if self._stop_event.wait(delay):
                raise RuntimeError("finder stopped while retrying")

    def _base_record(self, tx: Transaction, tx_msg: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "guid": uuid.uuid4(),
            "block_hash": ZERO_HASH,
            "block_number": tx.block_number,
            "from_address": hex_to_address(tx.from_address),
            "to_address": hex_to_address(tx.to_address),
            "token_address": hex_to_address(tx.token_address),
            "token_id": _PLACEHOLDER,
            "token_meta": _PLACEHOLDER,
            "amount": _parse_decimal(tx_msg.get("value")),
            "timestamp": _now(),
        }

    def build_transaction(self, tx: Transaction, tx_msg: Mapping[str, Any]) -> dict[str, Any]:
        """The transaction-flow record for a found transaction."""
        record = self._base_record(tx, tx_msg)
        record.update(
            hash=hex_to_hash(tx.hash),
            fee=_parse_decimal(tx_msg.get("fee")),
            status=TxStatus.SUCCESS,
            tx_type=tx.tx_type,
        )
        return record

    def handle_deposit(self, tx: Transaction, tx_msg: Mapping[str, Any]) -> dict[str, Any]:
        """The deposit record for a found deposit."""
        record = self._base_record(tx, tx_msg)
        record.update(
            tx_hash=hex_to_hash(tx.hash),
            max_fee_per_gas=tx_msg.get("fee", ""),
            status=TxStatus.SUCCESS,
        )
        return record

    def handle_withdraw(self, tx: Transaction, tx_msg: Mapping[str, Any]) -> dict[str, Any]:
        """The withdrawal record for a withdrawal seen on chain."""
        record = self._base_record(tx, tx_msg)
        record.update(
            tx_hash=hex_to_hash(tx.hash),
            max_fee_per_gas=tx_msg.get("fee", ""),
            status=TxStatus.BROADCASTED,
        )
        return record

    def handle_internal_tx(self, tx: Transaction, tx_msg: Mapping[str, Any]) -> dict[str, Any]:
        """The internal-transfer record for a collection or hot/cold move seen on chain."""
        record = self._base_record(tx, tx_msg)
        record.update(
            tx_hash=hex_to_hash(tx.hash),
            max_fee_per_gas=tx_msg.get("fee", ""),
            status=TxStatus.BROADCASTED,
        )
        return record