"""
Transaction value object and processing outcomes.

A Transaction pairs an amount in cents with the record set fetched for
it. It is created when an amount is submitted, consumed by one
validate/settle cycle, and then discarded.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional
import logging

from .record import Record

logger = logging.getLogger(__name__)


class TransactionStatus(str, Enum):
    """Per-transaction lifecycle states."""

    CREATED = "created"
    VALIDATING = "validating"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TransactionStatus.REJECTED,
            TransactionStatus.SETTLED,
            TransactionStatus.FAILED,
        )


@dataclass(frozen=True)
class Transaction:
    """
    An amount paired with the record set fetched for it.

    Attributes:
        amount_cents: Amount in the smallest currency unit, never negative
        records: Records fetched from the record source, in fetch order

    Example:
        >>> tx = Transaction(
        ...     amount_cents=500,
        ...     records=(Record(0x5F20, "Cardholder Name", "James Smith"),)
        ... )
        >>> tx.amount_display
        '5.00'
        >>> tx.value_for(0x5F20)
        'James Smith'
    """

    amount_cents: int
    records: tuple[Record, ...]

    def __post_init__(self):
        """
        Validation that runs after __init__.

        Records are frozen into a tuple so a transaction cannot change
        after it is handed to the validator.
        """
        self._validate_amount()
        object.__setattr__(self, 'records', tuple(self.records))
        self._validate_records()

    def _validate_amount(self) -> None:
        """Ensure amount is a non-negative integer number of cents."""
        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            raise ValueError(
                f"Invalid amount: {self.amount_cents!r}. "
                f"Expected an integer number of cents"
            )

        if self.amount_cents < 0:
            raise ValueError(
                f"Invalid amount: {self.amount_cents}. Amount cannot be negative"
            )

    def _validate_records(self) -> None:
        for record in self.records:
            if not isinstance(record, Record):
                raise ValueError(f"Invalid record: {record!r}")

    # ============================================================
    # Computed Properties
    # ============================================================

    @property
    def amount(self) -> int:
        return self.amount_cents

    @property
    def chip_data(self) -> tuple[Record, ...]:
        """The record set as read from the card."""
        return self.records

    @property
    def amount_display(self) -> str:
        """Return the amount in major units with two decimals ("5.00")."""
        return f"{Decimal(self.amount_cents) / 100:.2f}"

    def has_tag(self, tag: int) -> bool:
        return any(record.tag == tag for record in self.records)

    def value_for(self, tag: int) -> Optional[str]:
        """
        Return the value of the first record carrying the given tag.

        Returns:
            The record value, or None if no record has the tag
        """
        for record in self.records:
            if record.tag == tag:
                return record.value
        return None

    @classmethod
    def create(cls, amount_cents: int, records: Iterable[Record]) -> "Transaction":
        return cls(amount_cents=amount_cents, records=tuple(records))


@dataclass(frozen=True)
class ValidationOutcome:
    """
    Result of validating a transaction's record set.

    Attributes:
        accepted: True if the transaction may be submitted for settlement
        reason: Why the record set was rejected, None when accepted
    """

    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "ValidationOutcome":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationOutcome":
        return cls(accepted=False, reason=reason)


@dataclass(frozen=True)
class SettlementOutcome:
    """Terminal result of one processed transaction."""

    success: bool
    error: Optional[str] = None
