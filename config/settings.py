"""
Runtime settings read from the environment.

Values come from environment variables; a .env file is loaded first if
present (for local development).
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SETTLEMENT_DELAY = 5.0
DEFAULT_LOG_LEVEL = "INFO"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    """
    Simulator settings.

    Attributes:
        settlement_delay: Seconds between acceptance and settlement
        chip_data_file: YAML chip profile, None to use the built-in mock card
        log_level: Name of the logging level
    """

    settlement_delay: float = DEFAULT_SETTLEMENT_DELAY
    chip_data_file: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL


def _read_delay(raw: Optional[str]) -> float:
    if raw is None or raw.strip() == "":
        return DEFAULT_SETTLEMENT_DELAY

    try:
        delay = float(raw)
    except ValueError:
        raise ValueError(f"Invalid SETTLEMENT_DELAY_SECONDS: '{raw}'. Expected a number")

    if delay < 0:
        raise ValueError(f"Invalid SETTLEMENT_DELAY_SECONDS: '{raw}'. Cannot be negative")
    return delay


def _read_log_level(raw: Optional[str]) -> str:
    if not raw:
        return DEFAULT_LOG_LEVEL

    level = raw.strip().upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{raw}'. Must be one of: {VALID_LOG_LEVELS}"
        )
    return level


def load_settings(load_env_file: bool = True) -> Settings:
    """
    Build Settings from the environment.

    Args:
        load_env_file: Load a .env file before reading variables

    Returns:
        Settings instance

    Raises:
        ValueError: If a variable holds an invalid value
    """
    if load_env_file:
        load_dotenv(find_dotenv(usecwd=True))

    settings = Settings(
        settlement_delay=_read_delay(os.environ.get('SETTLEMENT_DELAY_SECONDS')),
        chip_data_file=os.environ.get('CHIP_DATA_FILE') or None,
        log_level=_read_log_level(os.environ.get('LOG_LEVEL')),
    )

    logger.debug(f"Loaded settings: {settings}")
    return settings
