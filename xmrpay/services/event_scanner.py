"""
Event driven scanner.

Consumes inbound signals one at a time in arrival order and drives the
reconciler for the affected scope:
- Daemon became available: rescan all pending invoices
- New block: rescan all pending invoices, then announce the block
- Transaction updated: reconcile that transaction only
- Daemon became unavailable: log only
"""

import asyncio
from collections.abc import Iterable
from enum import StrEnum

from loguru import logger

from xmrpay.config.constants import SIGNAL_QUEUE_MAXSIZE
from xmrpay.models import chain_payment_method_id
from xmrpay.services.events import (
    DaemonAvailabilityChanged,
    NewBlock,
    NewBlockProcessed,
    Signal,
    TransactionUpdated,
)
from xmrpay.services.interfaces import NotificationPublisher
from xmrpay.services.payment_reconciler import PaymentReconciler
from xmrpay.utils.exceptions import PaymentInvariantError, is_malformed, is_transient


class ScannerState(StrEnum):
    IDLE = "idle"
    SCANNING_ALL = "scanning_all"
    SCANNING_ONE = "scanning_one"


class EventDrivenScanner:
    """
    Single consumer of inbound signals.

    Signals are accepted at any time through ``submit`` and processed
    sequentially by ``run``. Availability per currency is owned here and is
    only changed by DaemonAvailabilityChanged signals; block and transaction
    signals for an unavailable currency are ignored.
    """

    def __init__(
        self,
        reconciler: PaymentReconciler,
        publisher: NotificationPublisher,
        crypto_codes: Iterable[str],
        queue_maxsize: int = SIGNAL_QUEUE_MAXSIZE,
    ) -> None:
        """
        Initialize scanner.

        Args:
            reconciler: Payment reconciler
            publisher: Outbound notifications
            crypto_codes: Currencies this scanner serves
            queue_maxsize: Signal queue bound, 0 for unbounded
        """
        self.reconciler = reconciler
        self.publisher = publisher
        self.crypto_codes = {code.upper() for code in crypto_codes}
        self.queue: asyncio.Queue[Signal] = asyncio.Queue(maxsize=queue_maxsize)
        self.availability: dict[str, bool] = dict.fromkeys(self.crypto_codes, False)
        self.state = ScannerState.IDLE
        self.processed = 0
        self.failed = 0
        self._task: asyncio.Task | None = None

    def supports(self, crypto_code: str) -> bool:
        return crypto_code.upper() in self.crypto_codes

    def is_available(self, crypto_code: str) -> bool:
        return self.availability.get(crypto_code.upper(), False)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, signal: Signal) -> bool:
        """
        Queue a signal without waiting.

        Returns:
            False if the queue is full and the signal was dropped
        """
        try:
            self.queue.put_nowait(signal)
        except asyncio.QueueFull:
            logger.warning(f"Signal queue full, dropping {signal}")
            return False
        return True

    async def run(self) -> None:
        """Process signals until cancelled."""
        self._task = asyncio.current_task()
        logger.info(f"Scanner started for {', '.join(sorted(self.crypto_codes)) or 'no currencies'}")
        try:
            while True:
                signal = await self.queue.get()
                try:
                    await self.process(signal)
                finally:
                    self.queue.task_done()
        finally:
            self.state = ScannerState.IDLE
            logger.info("Scanner stopped")

    def start(self) -> asyncio.Task:
        """Run the scanner in a background task."""
        self._task = asyncio.create_task(self.run(), name="event-scanner")
        return self._task

    async def stop(self) -> None:
        """
        Cancel the scanner, aborting any scan in progress.

        Cancellation of the task calling stop() still propagates.
        """
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    async def process(self, signal: Signal) -> None:
        """
        Handle one signal, logging any failure.

        Only cancellation propagates; every other error is logged with the
        signal's context and the signal is dropped.
        """
        try:
            await self.handle(signal)
            self.processed += 1
        except PaymentInvariantError as e:
            self.failed += 1
            logger.critical(f"Invariant violated while handling {signal}: {e}")
        except Exception as e:
            self.failed += 1
            if is_transient(e):
                logger.warning(f"Transient RPC failure while handling {signal}, dropped: {e}")
            elif is_malformed(e):
                logger.error(f"Malformed RPC data while handling {signal}, dropped: {e}")
            else:
                logger.exception(f"Failed to handle {signal}: {e}")
        finally:
            self.state = ScannerState.IDLE

    async def handle(self, signal: Signal) -> None:
        """Dispatch a signal to its handler."""
        if not self.supports(signal.crypto_code):
            logger.warning(f"Ignoring {signal}: {signal.crypto_code} is not configured")
            return

        if isinstance(signal, DaemonAvailabilityChanged):
            await self.on_availability_changed(signal)
        elif isinstance(signal, NewBlock):
            await self.on_new_block(signal)
        elif isinstance(signal, TransactionUpdated):
            await self.on_transaction_updated(signal)
        else:
            raise TypeError(f"Unknown signal {signal!r}")

    async def on_availability_changed(self, signal: DaemonAvailabilityChanged) -> None:
        crypto_code = signal.crypto_code.upper()
        self.availability[crypto_code] = signal.available
        if not signal.available:
            logger.info(f"{crypto_code} just became unavailable")
            return

        logger.info(f"{crypto_code} just became available")
        await self._scan_all(crypto_code)

    async def on_new_block(self, signal: NewBlock) -> None:
        crypto_code = signal.crypto_code.upper()
        if not self.is_available(crypto_code):
            logger.debug(f"Ignoring block {signal.block_hash}: {crypto_code} unavailable")
            return

        await self._scan_all(crypto_code)
        await self.publisher.publish(
            NewBlockProcessed(payment_method_id=chain_payment_method_id(crypto_code))
        )

    async def on_transaction_updated(self, signal: TransactionUpdated) -> None:
        crypto_code = signal.crypto_code.upper()
        if not self.is_available(crypto_code):
            logger.debug(f"Ignoring transaction {signal.tx_hash}: {crypto_code} unavailable")
            return

        self.state = ScannerState.SCANNING_ONE
        await self.reconciler.reconcile_one(crypto_code, signal.tx_hash)

    async def _scan_all(self, crypto_code: str) -> None:
        self.state = ScannerState.SCANNING_ALL
        await self.reconciler.update_any_pending_payment(crypto_code)
