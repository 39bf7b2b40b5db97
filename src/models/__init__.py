"""
Data models for chip transaction processing.

This module exports the typed data structures shared by the record
source, the validator and the coordinator.
"""

from .record import (
    Record,
    REQUIRED_TAGS,
    TAG_APPLICATION_PREFERRED_NAME,
    TAG_CARDHOLDER_NAME,
    TAG_ISSUER_COUNTRY_CODE,
)
from .transaction import (
    Transaction,
    TransactionStatus,
    ValidationOutcome,
    SettlementOutcome,
)

__all__ = [
    'Record',
    'REQUIRED_TAGS',
    'TAG_APPLICATION_PREFERRED_NAME',
    'TAG_CARDHOLDER_NAME',
    'TAG_ISSUER_COUNTRY_CODE',
    'Transaction',
    'TransactionStatus',
    'ValidationOutcome',
    'SettlementOutcome',
]
