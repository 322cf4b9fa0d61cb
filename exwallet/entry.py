"""Lifecycle of the background workers."""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class WorkerEntry:
    """Starts and stops the synchronizer, the finder and the withdrawal sender together."""

    def __init__(
        self,
        synchronizer: Any,
        finder: Any,
        withdraw: Any,
        shutdown: Callable[[BaseException], None] | None = None,
    ) -> None:
        self.synchronizer = synchronizer
        self.finder = finder
        self.withdraw = withdraw
        self.shutdown = shutdown
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        """Start the synchronizer, then the finder, then the withdrawal sender."""
        for name, worker in (
            ("synchronizer", self.synchronizer),
            ("finder", self.finder),
            ("withdraw", self.withdraw),
        ):
            try:
                worker.start()
            except Exception:
                logger.exception("failed to start %s", name)
                raise
        self._stopped = False

    def stop(self) -> None:
        """Stop the synchronizer first so no new batches arrive, then the consumers."""
        for name, worker in (
            ("synchronizer", self.synchronizer),
            ("finder", self.finder),
            ("withdraw", self.withdraw),
        ):
            try:
                worker.stop()
            except Exception:
                logger.exception("failed to stop %s", name)
                raise
        self._stopped = True