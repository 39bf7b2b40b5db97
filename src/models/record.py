"""
Record dataclass for tagged chip data fields.

Each record is one (tag, description, value) field read from the
presented card. The tag identifies the field; the description is only
a human-readable label.
"""

from dataclasses import dataclass
from typing import Union
import logging

logger = logging.getLogger(__name__)

# Known chip tags
TAG_APPLICATION_PREFERRED_NAME = 0x9F12
TAG_CARDHOLDER_NAME = 0x5F20
TAG_ISSUER_COUNTRY_CODE = 0x5F28

# Tags a record set must contain, in the order they are checked
REQUIRED_TAGS = (
    TAG_APPLICATION_PREFERRED_NAME,
    TAG_CARDHOLDER_NAME,
    TAG_ISSUER_COUNTRY_CODE,
)

MAX_TAG = 0xFFFFFFFF


@dataclass(frozen=True)
class Record:
    """
    Represents one tagged field returned by a record source.

    Attributes:
        tag: 32-bit unsigned field identifier (e.g. 0x5F20 for holder name)
        description: Label for display, not used in validation
        value: Opaque string payload

    Example:
        >>> record = Record(0x5F20, "Cardholder Name", "James Smith")
        >>> record.tag_hex
        '0x5F20'
    """

    tag: int
    description: str
    value: str

    def __post_init__(self):
        if isinstance(self.tag, bool) or not isinstance(self.tag, int):
            raise ValueError(f"Invalid record tag: {self.tag!r}. Must be an integer")

        if not 0 <= self.tag <= MAX_TAG:
            raise ValueError(
                f"Invalid record tag: {self.tag:#x}. "
                f"Must fit in 32 unsigned bits"
            )

    @property
    def tag_hex(self) -> str:
        """Return the tag formatted as it appears in chip dumps."""
        return f"0x{self.tag:04X}"

    def to_dict(self) -> dict[str, str]:
        return {
            "tag": self.tag_hex,
            "description": self.description,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Record":
        """
        Create a Record from a dictionary.

        The tag may be an integer or a string such as "0x9f12" or "5F20"
        (strings are always read as hexadecimal).

        Args:
            data: Dictionary with 'tag', 'description' and 'value' keys

        Returns:
            Record instance

        Raises:
            ValueError: If required fields are missing or the tag is invalid
        """
        missing = [f for f in ('tag', 'value') if f not in data or data[f] is None]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")

        return cls(
            tag=parse_tag(data['tag']),
            description=str(data.get('description') or ''),
            value=str(data['value']),
        )


def parse_tag(raw: Union[int, str]) -> int:
    """
    Convert a tag given as int or hex string to an integer.

    Raises:
        ValueError: If the string is not valid hexadecimal
    """
    if isinstance(raw, bool):
        raise ValueError(f"Invalid record tag: {raw!r}")

    if isinstance(raw, int):
        return raw

    text = str(raw).strip()
    try:
        return int(text, 16)
    except ValueError:
        raise ValueError(f"Invalid record tag: '{raw}'. Expected hex like '0x9F12'")
