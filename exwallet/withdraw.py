"""Periodic broadcasting of signed withdrawals."""

from __future__ import annotations

import logging
import random
import threading
from typing import Any, Callable

from exwallet.models import TxStatus, hex_to_hash

logger = logging.getLogger(__name__)


class Withdraw:
    """Sends signed, unsent withdrawals every ``interval`` seconds and records the result.

    ``db`` provides ``transaction()`` (a context manager) and the tables ``business``
    (``query_business_list``), ``withdraws`` (``un_send_withdraws_list``,
    ``update_withdraw_list_by_id``) and ``balances`` (``update_balance_list_by_two_address``).
    """

    def __init__(
        self,
        db: Any,
        rpc_client: Any,
        interval: float,
        shutdown: Callable[[BaseException], None] | None = None,
        retry_attempts: int = 10,
        retry_min: float = 1.0,
        retry_max: float = 20.0,
        retry_jitter: float = 0.25,
    ) -> None:
        self.db = db
        self.rpc_client = rpc_client
        self.interval = interval
        self._shutdown = shutdown
        self.retry_attempts = retry_attempts
        self.retry_min = retry_min
        self.retry_max = retry_max
        self.retry_jitter = retry_jitter
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    def start(self) -> None:
        """Run :meth:`process_once` on every interval in a background thread."""
        if self._thread is not None:
            raise RuntimeError("already started")
        logger.info("starting withdraw....")
        self._stop_event.clear()
        self._error = None
        self._thread = threading.Thread(target=self._run, name="withdraw", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the loop; raise if it ended on a critical error."""
        self._stop_event.set()
        logger.info("stop withdraw......")
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._error is not None:
            error, self._error = self._error, None
            raise RuntimeError(f"failed to await withdraw {error}") from error
        logger.info("stop withdraw success")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.process_once()
            except Exception as exc:
                logger.exception("critical error in withdraw")
                self._error = exc
                if self._shutdown is not None:
                    self._shutdown(RuntimeError(f"critical error in withdraw: {exc}"))
                return
        logger.info("stopping withdraw in worker")

    def process_once(self) -> None:
        """Broadcast every business's unsent withdrawals and persist the outcome."""
        try:
            business_list = self.db.business.query_business_list()
        except Exception:
            logger.exception("failed to query business list")
            return

        for business in business_list or []:
            uid = business["business_uid"]
            try:
                unsent = self.db.withdraws.un_send_withdraws_list(uid)
            except Exception:
                logger.exception("failed to list unsent withdrawals for %s", uid)
                continue
            if not unsent:
                logger.info("no withdraw transaction found for %s", uid)
                continue

            balances: list[dict[str, Any]] = []
            for withdrawal in unsent:
                try:
                    tx_hash = self.rpc_client.send_tx(withdrawal["tx_sign_hex"])
                except Exception:
                    logger.exception("failed to send transaction")
                    continue
                balances.append(
                    {
                        "token_address": withdrawal["token_address"],
                        "address": withdrawal["from_address"],
                        "lock_balance": withdrawal["amount"],
                    }
                )
                withdrawal["tx_hash"] = hex_to_hash(tx_hash)
                withdrawal["status"] = TxStatus.BROADCASTED

            self._with_retry(lambda: self._persist(uid, balances, unsent))

    def _persist(self, uid: str, balances: list[dict[str, Any]], unsent: list[Any]) -> None:
        with self.db.transaction():
            if balances:
                logger.info("update withdraw balance, %d entries", len(balances))
                self.db.balances.update_balance_list_by_two_address(uid, balances)
            self.db.withdraws.update_withdraw_list_by_id(uid, unsent)

    def _with_retry(self, operation: Callable[[], None]) -> None:
        for attempt in range(self.retry_attempts):
            try:
                operation()
                return
            except Exception:
                if attempt == self.retry_attempts - 1:
                    raise
                logger.exception("unable to persist withdrawals, retrying")
            delay = min(self.retry_min * 2**attempt, self.retry_max)
            delay += random.uniform(0, self.retry_jitter)
            if self._stop_event.wait(delay):
                raise RuntimeError("withdraw stopped while retrying")