"""
Record sources that stand in for the card reader.

A record source returns the tagged chip records for the card being
presented. Reads are synchronous: the data is assumed to be cached by
the reader, so fetching is a short local operation.

Architecture:
- RecordSourceProtocol is what the coordinator depends on
- MockCardReader returns a fixed card (the default)
- YamlRecordSource reads a card profile from config/chip_data.yaml
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Protocol, Union

import yaml

from config.chip_data import load_profile
from src.models.record import (
    Record,
    TAG_APPLICATION_PREFERRED_NAME,
    TAG_CARDHOLDER_NAME,
    TAG_ISSUER_COUNTRY_CODE,
)

logger = logging.getLogger(__name__)


DEFAULT_CHIP_DATA = (
    Record(TAG_APPLICATION_PREFERRED_NAME, "Application Preferred Name", "MasterCard"),
    Record(TAG_CARDHOLDER_NAME, "Cardholder Name", "James Smith"),
    Record(TAG_ISSUER_COUNTRY_CODE, "Issuer Country Code", "0840"),
)


class SourceUnavailableError(RuntimeError):
    """Error raised when a record source cannot produce records."""
    pass


class RecordSourceProtocol(Protocol):
    """What the coordinator needs from a record source."""

    def fetch(self) -> list[Record]:
        """Return the records of the presented card."""
        ...


class MockCardReader:
    """
    Card reader that always returns the same records.

    By default it returns the three-record set of a valid MasterCard
    (preferred name, holder name, country code). Tests pass their own
    records to simulate malformed cards.

    Example:
        >>> reader = MockCardReader()
        >>> [r.value for r in reader.fetch()]
        ['MasterCard', 'James Smith', '0840']
    """

    def __init__(self, records: Optional[Iterable[Record]] = None):
        self._records = tuple(DEFAULT_CHIP_DATA if records is None else records)

    def fetch(self) -> list[Record]:
        return list(self._records)


class YamlRecordSource:
    """
    Record source backed by a YAML chip data profile.

    The profile is read on every fetch, so edits take effect on the
    next transaction.

    Attributes:
        path: Profile path, or None to use the default profile lookup
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = path

    def fetch(self) -> list[Record]:
        """
        Read the records from the profile.

        Raises:
            SourceUnavailableError: If the profile is missing, malformed,
                or holds an invalid record entry
        """
        try:
            entries = load_profile(self.path)
            records = [Record.from_dict(entry) for entry in entries]
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Failed to read chip data: {e}")
            raise SourceUnavailableError(f"Chip data unavailable: {e}") from e

        logger.debug(f"Fetched {len(records)} records")
        return records


def create_record_source(chip_data_file: Optional[str] = None) -> RecordSourceProtocol:
    """
    Create the record source for the configured environment.

    Args:
        chip_data_file: YAML profile path; None selects the mock card

    Returns:
        A record source
    """
    if chip_data_file:
        logger.info(f"Using chip data profile: {chip_data_file}")
        return YamlRecordSource(chip_data_file)

    logger.info("Using built-in mock card reader")
    return MockCardReader()
