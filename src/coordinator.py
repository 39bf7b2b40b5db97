"""
Transaction coordinator: the start -> validate -> settle workflow.

The coordinator is used in two phases:

1. start_transaction(amount) reads the card and returns a Transaction
   the caller can show for confirmation.
2. process_transaction(transaction, on_complete) validates it. A
   rejected transaction reports on_complete(False) before the call
   returns; an accepted one is settled after a fixed delay and reports
   on_complete(True) or on_complete(False) from the scheduler.

Status messages are published to an optional observer callable for
display. One transaction is in progress at a time: a started transaction
is processed or cancelled before the next one can start.

Architecture:
- Record source, validator and scheduler are injected (DI for tests)
- Settlement is a hook, so tests can inject settlement failures
- create_coordinator() builds one from Settings
"""

import logging
import threading
from typing import Callable, Optional

from src.models.transaction import (
    SettlementOutcome,
    Transaction,
    TransactionStatus,
)
from src.record_source import (
    RecordSourceProtocol,
    SourceUnavailableError,
    create_record_source,
)
from src.scheduler import SchedulerProtocol, ThreadingScheduler
from src.validator import TransactionValidator

logger = logging.getLogger(__name__)

DEFAULT_SETTLEMENT_DELAY = 5.0

# Status messages published to the observer
STATUS_START = "start transaction"
STATUS_PROCESS = "process transaction"
STATUS_SETTLED = "transaction settled"
STATUS_FAILED = "transaction failed"

StatusObserver = Callable[[str], None]
CompletionCallback = Callable[[bool], None]
SettlementHook = Callable[[Transaction], bool]


class TransactionInProgressError(RuntimeError):
    """Error raised when a transaction starts while another is in progress."""
    pass


class SettlementFailedError(RuntimeError):
    """Error a settlement hook raises to fail a transaction."""
    pass


def always_settle(transaction: Transaction) -> bool:
    """Default settlement: every accepted transaction succeeds."""
    return True


class TransactionCoordinator:
    """
    Owns the workflow and callbacks for one transaction at a time.

    Example:
        >>> scheduler = ManualScheduler()
        >>> coordinator = TransactionCoordinator(MockCardReader(), scheduler=scheduler)
        >>> tx = coordinator.start_transaction(500)
        >>> results = []
        >>> coordinator.process_transaction(tx, results.append)
        True
        >>> scheduler.advance(5)
        1
        >>> results
        [True]

    Attributes:
        record_source: Supplies the card records
        validator: Decides whether a record set may be settled
        scheduler: Runs the deferred settlement
        settlement_delay: Seconds between acceptance and settlement
        observer: Optional callable receiving status messages
        status: Latest state of the current (or last) transaction
        pending_amount: Amount of the started, not yet settled transaction
        last_outcome: Terminal outcome of the last processed transaction
    """

    def __init__(
        self,
        record_source: RecordSourceProtocol,
        validator: Optional[TransactionValidator] = None,
        scheduler: Optional[SchedulerProtocol] = None,
        settlement_delay: float = DEFAULT_SETTLEMENT_DELAY,
        observer: Optional[StatusObserver] = None,
        settle: Optional[SettlementHook] = None,
    ):
        if settlement_delay < 0:
            raise ValueError(f"Invalid settlement delay: {settlement_delay}. Cannot be negative")

        self.record_source = record_source
        self.validator = validator or TransactionValidator()
        self.scheduler = scheduler or ThreadingScheduler()
        self.settlement_delay = settlement_delay
        self.observer = observer
        self._settle = settle or always_settle

        self._lock = threading.Lock()
        self._in_flight = False

        self.status: Optional[TransactionStatus] = None
        self.pending_amount: Optional[int] = None
        self.last_outcome: Optional[SettlementOutcome] = None

    @property
    def in_flight(self) -> bool:
        """True while an accepted transaction is waiting to settle."""
        with self._lock:
            return self._in_flight

    # ============================================================
    # Workflow
    # ============================================================

    def start_transaction(self, amount_cents: int) -> Transaction:
        """
        Read the card and bind its records to the amount.

        The coordinator is occupied from here until the transaction is
        processed to a terminal state or cancelled with
        cancel_transaction().

        Args:
            amount_cents: Amount in the smallest currency unit

        Returns:
            A new Transaction holding the amount and the fetched records

        Raises:
            TransactionInProgressError: If a transaction is already started
                or still settling
            SourceUnavailableError: If the record source cannot be read
            ValueError: If the amount is negative or not an integer
        """
        with self._lock:
            busy = self._in_flight or self.pending_amount is not None
            if not busy:
                self.pending_amount = amount_cents

        if busy:
            logger.warning("Start refused: another transaction is in progress")
            raise TransactionInProgressError(
                "A transaction is already in progress; process or cancel it first"
            )

        self._emit(STATUS_START)

        try:
            records = self.record_source.fetch()
            transaction = Transaction(amount_cents=amount_cents, records=tuple(records))
        except SourceUnavailableError as e:
            logger.error(f"Cannot start transaction: {e}")
            self._release()
            raise
        except Exception:
            self._release()
            raise

        self.status = TransactionStatus.CREATED
        logger.info(
            f"Started transaction for {transaction.amount_display} "
            f"with {len(transaction.records)} record(s)"
        )
        return transaction

    def cancel_transaction(self) -> None:
        """
        Drop a started transaction that has not been processed yet.

        Settlements already scheduled cannot be cancelled.

        Raises:
            TransactionInProgressError: If a transaction is settling
        """
        with self._lock:
            settling = self._in_flight
            if not settling:
                self.pending_amount = None

        if settling:
            raise TransactionInProgressError("A settling transaction cannot be cancelled")

        logger.info("Started transaction cancelled")

    def process_transaction(
        self,
        transaction: Transaction,
        on_complete: CompletionCallback,
    ) -> bool:
        """
        Validate a transaction and, if accepted, schedule its settlement.

        on_complete is called exactly once. For a rejected transaction it
        is called with False before this method returns; for an accepted
        one it is called from the scheduler after settlement_delay.
        Failures are never raised.

        Args:
            transaction: Transaction returned by start_transaction()
            on_complete: Receives the settlement result

        Returns:
            True if the transaction was submitted for settlement, False if
            it was rejected
        """
        self._emit(STATUS_PROCESS)

        if self.in_flight:
            self._refuse_overlap(on_complete)
            return False

        self.status = TransactionStatus.VALIDATING

        outcome = self.validator.validate(transaction.amount_cents, transaction.records)
        if not outcome.accepted:
            self._reject(outcome.reason or "record set rejected", on_complete)
            return False

        with self._lock:
            busy = self._in_flight
            if not busy:
                self._in_flight = True
                self.pending_amount = transaction.amount_cents

        if busy:
            self._refuse_overlap(on_complete)
            return False

        self.status = TransactionStatus.ACCEPTED
        logger.info(f"Transaction accepted; settling in {self.settlement_delay:.1f}s")

        # Set before scheduling: a real timer may fire before call_later returns
        self.status = TransactionStatus.SETTLING
        try:
            self.scheduler.call_later(
                self.settlement_delay,
                lambda: self._complete_settlement(transaction, on_complete),
            )
        except Exception as e:
            logger.error(f"Cannot schedule settlement: {type(e).__name__}: {e}")
            with self._lock:
                self._in_flight = False
            self._reject(
                f"settlement could not be scheduled: {e}",
                on_complete,
                status=TransactionStatus.FAILED,
            )
            return False

        return True

    # ============================================================
    # Internal
    # ============================================================

    def _release(self) -> None:
        with self._lock:
            self.pending_amount = None

    def _reject(
        self,
        reason: str,
        on_complete: CompletionCallback,
        status: TransactionStatus = TransactionStatus.REJECTED,
    ) -> None:
        logger.warning(f"Transaction rejected: {reason}")
        self._release()
        self.status = status
        self.last_outcome = SettlementOutcome(success=False, error=reason)
        self._emit(f"transaction rejected: {reason}")
        self._notify(on_complete, False)

    def _refuse_overlap(self, on_complete: CompletionCallback) -> None:
        """Reject a call made while another transaction settles, leaving its state alone."""
        reason = "another transaction is still settling"
        logger.warning(f"Transaction rejected: {reason}")
        self._emit(f"transaction rejected: {reason}")
        self._notify(on_complete, False)

    def _complete_settlement(
        self,
        transaction: Transaction,
        on_complete: CompletionCallback,
    ) -> None:
        """Run the settlement hook and report its result."""
        error = None
        try:
            success = bool(self._settle(transaction))
            if not success:
                error = "settlement declined"
        except Exception as e:
            logger.error(f"Settlement failed: {type(e).__name__}: {e}")
            success = False
            error = str(e)

        with self._lock:
            self._in_flight = False
            self.pending_amount = None

        self.last_outcome = SettlementOutcome(success=success, error=error)
        if success:
            self.status = TransactionStatus.SETTLED
            logger.info(f"Transaction settled: {transaction.amount_display}")
            self._emit(STATUS_SETTLED)
        else:
            self.status = TransactionStatus.FAILED
            self._emit(STATUS_FAILED)

        self._notify(on_complete, success)

    def _emit(self, message: str) -> None:
        logger.info(f"Status: {message}")
        if self.observer is None:
            return

        try:
            self.observer(message)
        except Exception:
            logger.exception("Status observer raised")

    def _notify(self, on_complete: CompletionCallback, success: bool) -> None:
        try:
            on_complete(success)
        except Exception:
            logger.exception("Completion callback raised")


def create_coordinator(
    settings,
    observer: Optional[StatusObserver] = None,
    scheduler: Optional[SchedulerProtocol] = None,
) -> TransactionCoordinator:
    """
    Create a coordinator from Settings.

    Args:
        settings: config.settings.Settings instance
        observer: Optional status observer
        scheduler: Scheduler override; real timers by default

    Returns:
        TransactionCoordinator wired to the configured record source
    """
    return TransactionCoordinator(
        record_source=create_record_source(settings.chip_data_file),
        scheduler=scheduler,
        settlement_delay=settings.settlement_delay,
        observer=observer,
    )
