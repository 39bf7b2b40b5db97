"""
Record set validation for chip transactions.

A transaction can only be submitted for settlement if its record set
is well formed. Rules are checked in order and the first failing rule
rejects the transaction:

1. The set holds exactly the expected number of records (3)
2. A record with the application preferred name tag exists
3. A record with the cardholder name tag exists
4. A record with the issuer country code tag exists

Tag checks only look for presence; duplicates are tolerated as long
as the count rule holds. The amount is not judged here.
"""

import logging
from typing import Iterable, Sequence

from src.models.record import (
    Record,
    REQUIRED_TAGS,
    TAG_APPLICATION_PREFERRED_NAME,
    TAG_CARDHOLDER_NAME,
    TAG_ISSUER_COUNTRY_CODE,
)
from src.models.transaction import Transaction, ValidationOutcome

logger = logging.getLogger(__name__)

EXPECTED_RECORD_COUNT = 3

TAG_NAMES = {
    TAG_APPLICATION_PREFERRED_NAME: "application preferred name",
    TAG_CARDHOLDER_NAME: "cardholder name",
    TAG_ISSUER_COUNTRY_CODE: "issuer country code",
}


class MalformedRecordSetError(ValueError):
    """Error raised when a record set breaks a validation rule."""
    pass


class RecordCountError(MalformedRecordSetError):
    """The record set does not hold the expected number of records."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected {expected} records, got {actual}")


class MissingTagError(MalformedRecordSetError):
    """A required tag is absent from the record set."""

    def __init__(self, tag: int):
        self.tag = tag
        name = TAG_NAMES.get(tag, "unknown field")
        super().__init__(f"missing required tag 0x{tag:04X} ({name})")


class TransactionValidator:
    """
    Decides whether a record set may be submitted for settlement.

    Attributes:
        expected_count: Exact number of records a set must hold
        required_tags: Tags that must each appear at least once, in check order
    """

    def __init__(
        self,
        expected_count: int = EXPECTED_RECORD_COUNT,
        required_tags: Sequence[int] = REQUIRED_TAGS,
    ):
        self.expected_count = expected_count
        self.required_tags = tuple(required_tags)

    def check(self, amount: int, records: Iterable[Record]) -> None:
        """
        Apply the rules in order.

        Args:
            amount: Transaction amount in cents (not judged by the rules)
            records: The record set to check

        Raises:
            RecordCountError: If the set does not hold expected_count records
            MissingTagError: For the first required tag that is absent
        """
        records = list(records)

        if len(records) != self.expected_count:
            raise RecordCountError(self.expected_count, len(records))

        present = {record.tag for record in records}
        for tag in self.required_tags:
            if tag not in present:
                raise MissingTagError(tag)

    def validate(self, amount: int, records: Iterable[Record]) -> ValidationOutcome:
        """
        Validate a record set without raising.

        Returns:
            ValidationOutcome.accept() if every rule passes, otherwise a
            rejected outcome carrying the first failing rule's message
        """
        try:
            self.check(amount, records)
        except MalformedRecordSetError as e:
            logger.warning(f"Record set rejected: {e}")
            return ValidationOutcome.reject(str(e))

        return ValidationOutcome.accept()

    def validate_transaction(self, transaction: Transaction) -> ValidationOutcome:
        return self.validate(transaction.amount_cents, transaction.records)
