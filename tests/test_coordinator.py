"""
Unit tests for the transaction coordinator.

Run with: pytest tests/test_coordinator.py -v

Uses ManualScheduler so settlement delays run on a virtual clock
instead of waiting real seconds.
"""

import sys
import threading
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import Settings
from src.coordinator import (
    TransactionCoordinator,
    TransactionInProgressError,
    SettlementFailedError,
    STATUS_START,
    STATUS_PROCESS,
    STATUS_SETTLED,
    STATUS_FAILED,
    create_coordinator,
)
from src.models.record import (
    Record,
    TAG_APPLICATION_PREFERRED_NAME,
    TAG_CARDHOLDER_NAME,
)
from src.models.transaction import Transaction, TransactionStatus
from src.record_source import (
    DEFAULT_CHIP_DATA,
    MockCardReader,
    SourceUnavailableError,
    YamlRecordSource,
)
from src.scheduler import ManualScheduler, ThreadingScheduler


# ============================================================
# Fakes
# ============================================================

class FailingSource:
    """Record source whose backing store is down."""

    def fetch(self):
        raise SourceUnavailableError("reader disconnected")


class CallbackRecorder:
    """Completion callback that records every call."""

    def __init__(self):
        self.calls = []

    def __call__(self, success):
        self.calls.append(success)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def events():
    return []


@pytest.fixture
def coordinator(scheduler, events):
    return TransactionCoordinator(
        record_source=MockCardReader(),
        scheduler=scheduler,
        settlement_delay=5,
        observer=events.append,
    )


class TestStartTransaction:
    """Tests for start_transaction()."""

    def test_returns_fetched_records_and_amount(self, coordinator):
        """Test the transaction binds the amount to the current records."""
        tx = coordinator.start_transaction(500)

        assert tx.amount_cents == 500
        assert list(tx.chip_data) == MockCardReader().fetch()
        assert coordinator.pending_amount == 500
        assert coordinator.status == TransactionStatus.CREATED

    def test_emits_start_status(self, coordinator, events):
        coordinator.start_transaction(500)
        assert events == [STATUS_START]

    def test_source_unavailable_aborts_start(self, scheduler):
        """Test that a source failure propagates before any validation."""
        coordinator = TransactionCoordinator(FailingSource(), scheduler=scheduler)

        with pytest.raises(SourceUnavailableError, match="reader disconnected"):
            coordinator.start_transaction(500)

        assert coordinator.status is None
        assert coordinator.pending_amount is None

    def test_negative_amount_raises_error(self, coordinator):
        """Test that negative amounts are refused at start."""
        with pytest.raises(ValueError, match="cannot be negative"):
            coordinator.start_transaction(-100)

    def test_start_while_settling_raises_error(self, coordinator, scheduler):
        """Test the overlap guard while a settlement is pending."""
        tx = coordinator.start_transaction(500)
        coordinator.process_transaction(tx, CallbackRecorder())

        with pytest.raises(TransactionInProgressError):
            coordinator.start_transaction(700)

        assert coordinator.pending_amount == 500

    def test_start_allowed_after_settlement(self, coordinator, scheduler):
        tx = coordinator.start_transaction(500)
        coordinator.process_transaction(tx, CallbackRecorder())
        scheduler.advance(5)

        assert coordinator.start_transaction(700).amount_cents == 700

    def test_second_start_before_processing_raises_error(self, coordinator, events):
        """Test a started, unprocessed transaction keeps its amount."""
        coordinator.start_transaction(500)

        with pytest.raises(TransactionInProgressError):
            coordinator.start_transaction(700)

        assert coordinator.pending_amount == 500
        assert events == [STATUS_START]

    def test_refused_start_emits_no_status(self, coordinator, events):
        """Test observers only see starts that were allowed."""
        coordinator.process_transaction(coordinator.start_transaction(500), CallbackRecorder())
        events.clear()

        with pytest.raises(TransactionInProgressError):
            coordinator.start_transaction(700)

        assert events == []

    def test_cancel_releases_started_transaction(self, coordinator):
        coordinator.start_transaction(500)

        coordinator.cancel_transaction()

        assert coordinator.pending_amount is None
        assert coordinator.start_transaction(700).amount_cents == 700

    def test_cancel_while_settling_raises_error(self, coordinator, scheduler):
        """Test a scheduled settlement cannot be cancelled."""
        recorder = CallbackRecorder()
        coordinator.process_transaction(coordinator.start_transaction(500), recorder)

        with pytest.raises(TransactionInProgressError):
            coordinator.cancel_transaction()

        scheduler.advance(5)
        assert recorder.calls == [True]

    def test_rejection_releases_started_transaction(self, scheduler):
        """Test a rejected transaction frees the coordinator for the next start."""
        coordinator = TransactionCoordinator(MockCardReader([]), scheduler=scheduler)

        coordinator.process_transaction(coordinator.start_transaction(500), CallbackRecorder())

        assert coordinator.pending_amount is None
        assert coordinator.start_transaction(700).amount_cents == 700

    def test_invalid_amount_releases_started_transaction(self, coordinator):
        with pytest.raises(ValueError):
            coordinator.start_transaction(-1)

        assert coordinator.pending_amount is None
        assert coordinator.start_transaction(500).amount_cents == 500

    def test_source_failure_allows_retry_with_new_source(self, scheduler):
        coordinator = TransactionCoordinator(FailingSource(), scheduler=scheduler)

        with pytest.raises(SourceUnavailableError):
            coordinator.start_transaction(500)

        coordinator.record_source = MockCardReader()
        assert coordinator.start_transaction(500).amount_cents == 500


class TestProcessRejected:
    """Tests for process_transaction() with malformed record sets."""

    def test_rejected_completes_synchronously(self, scheduler):
        """Test callback(False) fires before process_transaction returns."""
        coordinator = TransactionCoordinator(
            MockCardReader(DEFAULT_CHIP_DATA[:2]), scheduler=scheduler
        )
        tx = coordinator.start_transaction(500)
        order = []

        result = coordinator.process_transaction(tx, lambda success: order.append(("callback", success)))
        order.append(("returned", result))

        assert order == [("callback", False), ("returned", False)]
        assert scheduler.pending == 0
        assert coordinator.status == TransactionStatus.REJECTED
        assert coordinator.in_flight is False

    def test_rejected_callback_fires_exactly_once(self, scheduler):
        coordinator = TransactionCoordinator(MockCardReader([]), scheduler=scheduler)
        recorder = CallbackRecorder()

        coordinator.process_transaction(coordinator.start_transaction(500), recorder)
        scheduler.advance(60)

        assert recorder.calls == [False]

    def test_rejection_reason_is_recorded(self, scheduler, events):
        coordinator = TransactionCoordinator(
            MockCardReader(DEFAULT_CHIP_DATA[:2]), scheduler=scheduler, observer=events.append
        )

        coordinator.process_transaction(coordinator.start_transaction(500), CallbackRecorder())

        assert coordinator.last_outcome.success is False
        assert "expected 3 records, got 2" in coordinator.last_outcome.error
        assert events[:2] == [STATUS_START, STATUS_PROCESS]
        assert events[2].startswith("transaction rejected:")


class TestProcessAccepted:
    """Tests for process_transaction() with valid record sets."""

    def test_returns_true_without_completing(self, coordinator, scheduler):
        """Test acceptance returns immediately, before settlement."""
        recorder = CallbackRecorder()

        assert coordinator.process_transaction(coordinator.start_transaction(500), recorder) is True
        assert recorder.calls == []
        assert scheduler.pending == 1
        assert coordinator.in_flight is True
        assert coordinator.status == TransactionStatus.SETTLING

    def test_settles_after_delay_never_before(self, coordinator, scheduler):
        recorder = CallbackRecorder()
        coordinator.process_transaction(coordinator.start_transaction(500), recorder)

        scheduler.advance(4.5)
        assert recorder.calls == []

        scheduler.advance(0.5)
        assert recorder.calls == [True]

    def test_callback_fires_exactly_once(self, coordinator, scheduler):
        recorder = CallbackRecorder()
        coordinator.process_transaction(coordinator.start_transaction(500), recorder)

        scheduler.advance(5)
        scheduler.advance(50)

        assert recorder.calls == [True]

    def test_state_after_settlement(self, coordinator, scheduler, events):
        coordinator.process_transaction(coordinator.start_transaction(500), CallbackRecorder())
        scheduler.advance(5)

        assert coordinator.status == TransactionStatus.SETTLED
        assert coordinator.in_flight is False
        assert coordinator.pending_amount is None
        assert coordinator.last_outcome.success is True
        assert events == [STATUS_START, STATUS_PROCESS, STATUS_SETTLED]

    def test_custom_delay(self, scheduler):
        coordinator = TransactionCoordinator(MockCardReader(), scheduler=scheduler, settlement_delay=0.5)
        recorder = CallbackRecorder()

        coordinator.process_transaction(coordinator.start_transaction(1), recorder)
        scheduler.advance(0.5)

        assert recorder.calls == [True]

    def test_second_process_while_settling_is_rejected(self, coordinator, scheduler):
        """Test that only one transaction settles at a time."""
        first, second = CallbackRecorder(), CallbackRecorder()
        tx = coordinator.start_transaction(500)

        assert coordinator.process_transaction(tx, first) is True
        assert coordinator.process_transaction(tx, second) is False
        assert second.calls == [False]

        scheduler.advance(5)
        assert first.calls == [True]
        assert scheduler.pending == 0

    def test_overlap_rejection_leaves_settling_state_alone(self, coordinator, scheduler, events):
        """Test a refused overlapping call does not touch the pending transaction."""
        tx = coordinator.start_transaction(500)
        coordinator.process_transaction(tx, CallbackRecorder())

        coordinator.process_transaction(tx, CallbackRecorder())

        assert coordinator.status == TransactionStatus.SETTLING
        assert coordinator.last_outcome is None
        assert coordinator.in_flight is True
        assert coordinator.pending_amount == 500
        assert events[-1] == "transaction rejected: another transaction is still settling"

        scheduler.advance(5)
        assert coordinator.status == TransactionStatus.SETTLED
        assert coordinator.last_outcome.success is True


class BrokenScheduler:
    """Scheduler that cannot start timers."""

    def call_later(self, delay, callback):
        raise RuntimeError("can't start new thread")


class TestSchedulingFailure:
    """Tests for a scheduler that fails to accept the settlement."""

    def test_reports_failure_without_raising(self, events):
        """Test callback(False) fires synchronously and nothing escapes."""
        coordinator = TransactionCoordinator(
            MockCardReader(), scheduler=BrokenScheduler(), observer=events.append
        )
        recorder = CallbackRecorder()

        result = coordinator.process_transaction(coordinator.start_transaction(500), recorder)

        assert result is False
        assert recorder.calls == [False]
        assert coordinator.status == TransactionStatus.FAILED
        assert "can't start new thread" in coordinator.last_outcome.error
        assert events[-1].startswith("transaction rejected: settlement could not be scheduled")

    def test_coordinator_is_released(self):
        coordinator = TransactionCoordinator(MockCardReader(), scheduler=BrokenScheduler())

        coordinator.process_transaction(coordinator.start_transaction(500), CallbackRecorder())

        assert coordinator.in_flight is False
        assert coordinator.pending_amount is None
        assert coordinator.start_transaction(700).amount_cents == 700


class TestSettlementFailure:
    """Tests for the settlement hook."""

    def test_declined_settlement_reports_false(self, scheduler, events):
        coordinator = TransactionCoordinator(
            MockCardReader(), scheduler=scheduler, observer=events.append,
            settle=lambda tx: False,
        )
        recorder = CallbackRecorder()

        assert coordinator.process_transaction(coordinator.start_transaction(500), recorder) is True
        scheduler.advance(5)

        assert recorder.calls == [False]
        assert coordinator.status == TransactionStatus.FAILED
        assert coordinator.last_outcome.error == "settlement declined"
        assert events[-1] == STATUS_FAILED

    def test_raising_hook_reports_false_once(self, scheduler):
        def settle(tx):
            raise SettlementFailedError("issuer unavailable")

        coordinator = TransactionCoordinator(MockCardReader(), scheduler=scheduler, settle=settle)
        recorder = CallbackRecorder()

        coordinator.process_transaction(coordinator.start_transaction(500), recorder)
        scheduler.advance(5)

        assert recorder.calls == [False]
        assert coordinator.last_outcome.error == "issuer unavailable"
        assert coordinator.in_flight is False

    def test_hook_receives_transaction(self, scheduler):
        seen = []
        coordinator = TransactionCoordinator(
            MockCardReader(), scheduler=scheduler, settle=lambda tx: seen.append(tx) or True
        )
        tx = coordinator.start_transaction(1234)

        coordinator.process_transaction(tx, CallbackRecorder())
        scheduler.advance(5)

        assert seen == [tx]


class TestCallbackIsolation:
    """Tests that caller code cannot break the coordinator."""

    def test_raising_callback_does_not_escape(self, coordinator, scheduler):
        def on_complete(success):
            raise RuntimeError("UI gone")

        coordinator.process_transaction(coordinator.start_transaction(500), on_complete)
        scheduler.advance(5)

        assert coordinator.in_flight is False
        assert coordinator.status == TransactionStatus.SETTLED

    def test_raising_observer_does_not_escape(self, scheduler):
        def observer(message):
            raise RuntimeError("label missing")

        coordinator = TransactionCoordinator(MockCardReader(), scheduler=scheduler, observer=observer)
        recorder = CallbackRecorder()

        coordinator.process_transaction(coordinator.start_transaction(500), recorder)
        scheduler.advance(5)

        assert recorder.calls == [True]

    def test_negative_delay_raises_error(self):
        with pytest.raises(ValueError, match="Cannot be negative"):
            TransactionCoordinator(MockCardReader(), settlement_delay=-1)


class TestScenarios:
    """End-to-end scenarios."""

    def test_scenario_a_default_card_settles(self, coordinator, scheduler, events):
        """Amount 500 with the default card settles True after the delay."""
        recorder = CallbackRecorder()

        tx = coordinator.start_transaction(500)
        assert coordinator.process_transaction(tx, recorder) is True
        assert recorder.calls == []

        scheduler.advance(5)

        assert recorder.calls == [True]
        assert events == [STATUS_START, STATUS_PROCESS, STATUS_SETTLED]

    def test_scenario_b_truncated_card_rejected(self, scheduler):
        """Two records reject synchronously."""
        coordinator = TransactionCoordinator(
            MockCardReader(DEFAULT_CHIP_DATA[:2]), scheduler=scheduler
        )
        recorder = CallbackRecorder()

        result = coordinator.process_transaction(coordinator.start_transaction(500), recorder)

        assert result is False
        assert recorder.calls == [False]

    def test_scenario_c_duplicate_tag_missing_country(self, scheduler):
        """Correct count but duplicated preferred name and no country code."""
        records = [
            Record(TAG_APPLICATION_PREFERRED_NAME, "Application Preferred Name", "MasterCard"),
            Record(TAG_APPLICATION_PREFERRED_NAME, "Application Preferred Name", "MasterCard"),
            Record(TAG_CARDHOLDER_NAME, "Cardholder Name", "James Smith"),
        ]
        coordinator = TransactionCoordinator(MockCardReader(records), scheduler=scheduler)
        recorder = CallbackRecorder()

        result = coordinator.process_transaction(coordinator.start_transaction(500), recorder)

        assert result is False
        assert recorder.calls == [False]
        assert "country code" in coordinator.last_outcome.error

    def test_processing_a_hand_built_transaction(self, coordinator, scheduler):
        """Test a Transaction not produced by start_transaction is validated too."""
        recorder = CallbackRecorder()
        tx = Transaction(amount_cents=100, records=())

        assert coordinator.process_transaction(tx, recorder) is False
        assert recorder.calls == [False]

    def test_real_timer_settlement(self):
        """Test the workflow with real timers and a short delay."""
        done = threading.Event()
        results = []

        def on_complete(success):
            results.append(success)
            done.set()

        coordinator = TransactionCoordinator(
            MockCardReader(), scheduler=ThreadingScheduler(), settlement_delay=0.01
        )

        assert coordinator.process_transaction(coordinator.start_transaction(500), on_complete)
        assert done.wait(timeout=5)
        assert results == [True]


class TestCreateCoordinator:
    """Tests for the factory."""

    def test_defaults_to_mock_reader(self):
        coordinator = create_coordinator(Settings(settlement_delay=2.0))

        assert isinstance(coordinator.record_source, MockCardReader)
        assert isinstance(coordinator.scheduler, ThreadingScheduler)
        assert coordinator.settlement_delay == 2.0

    def test_uses_chip_data_file(self, tmp_path):
        profile = tmp_path / "card.yaml"
        profile.write_text("records: []\n")

        coordinator = create_coordinator(
            Settings(chip_data_file=str(profile)), scheduler=ManualScheduler()
        )

        assert isinstance(coordinator.record_source, YamlRecordSource)
        assert isinstance(coordinator.scheduler, ManualScheduler)
