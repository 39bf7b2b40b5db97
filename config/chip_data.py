"""
Chip data profiles for the file-backed record source.

This module loads the records a simulated card returns from
chip_data.yaml, so different cards can be tried without code changes.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import yaml

logger = logging.getLogger(__name__)


def get_profile_file(path: Optional[Union[str, Path]] = None) -> Path:
    """
    Determine which chip data profile to use.

    Priority:
    1. The explicit path, if given
    2. chip_data.yaml (user's custom profile, gitignored)
    3. chip_data.yaml.example (template/fallback)

    Returns:
        Path to the profile to use

    Raises:
        FileNotFoundError: If no profile exists
    """
    if path is not None:
        explicit = Path(path)
        if not explicit.exists():
            raise FileNotFoundError(f"Chip data profile not found: {explicit}")
        return explicit

    config_dir = Path(__file__).parent

    custom_profile = config_dir / "chip_data.yaml"
    if custom_profile.exists():
        return custom_profile

    example_profile = config_dir / "chip_data.yaml.example"
    if example_profile.exists():
        logger.warning(
            "Using chip_data.yaml.example - copy it to chip_data.yaml to simulate a different card"
        )
        return example_profile

    raise FileNotFoundError(
        "No chip data profile found.\n"
        "Please copy config/chip_data.yaml.example to config/chip_data.yaml"
    )


def load_profile(path: Optional[Union[str, Path]] = None) -> list[dict]:
    """
    Load the raw record entries of a chip data profile.

    The file holds a top-level 'records' list; each entry has 'tag',
    'description' and 'value' keys.

    Returns:
        List of record dictionaries, in file order

    Raises:
        FileNotFoundError: If the profile doesn't exist
        yaml.YAMLError: If YAML is malformed
        ValueError: If the file has no 'records' list
    """
    profile_file = get_profile_file(path)

    with open(profile_file, 'r', encoding='utf-8') as f:
        profile = yaml.safe_load(f) or {}

    if not isinstance(profile, dict):
        raise ValueError(f"Invalid chip data profile {profile_file.name}: expected a mapping")

    records = profile.get('records')
    if not isinstance(records, list):
        raise ValueError(f"Invalid chip data profile {profile_file.name}: 'records' must be a list")

    for entry in records:
        if not isinstance(entry, dict):
            raise ValueError(f"Invalid record entry in {profile_file.name}: {entry!r}")

    logger.info(f"Loaded {len(records)} chip records from {profile_file.name}")
    return records
