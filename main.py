"""
Chip Transaction Simulator - Main Orchestrator

This script runs one transaction through the full workflow:
1. Convert the entered amount to cents
2. Read the card records (mock reader or YAML chip profile)
3. Show the records and ask for confirmation
4. Validate and submit the transaction for settlement
5. Wait for the settlement result

Usage:
    python main.py 5.00
    python main.py 12.34 --yes --delay 1
    python main.py 5 --chip-data config/chip_data.yaml
"""

import sys
import logging
import argparse
import threading
from dataclasses import replace
from decimal import Decimal, InvalidOperation, localcontext
from typing import List, Optional

from config.settings import load_settings
from src.coordinator import TransactionInProgressError, create_coordinator
from src.record_source import SourceUnavailableError

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_amount_to_cents(text: str) -> int:
    """
    Convert entered amount text to an integer number of cents.

    Args:
        text: Decimal amount such as "5", "5.00" or "1,250.50"

    Returns:
        Amount in cents

    Raises:
        ValueError: If the text is not a non-negative amount with at
            most two decimal places
    """
    cleaned = (text or '').replace(',', '').strip()
    if not cleaned:
        raise ValueError("Amount cannot be empty")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Invalid amount format: '{text}'. Expected a value like '5.00'")

    if not amount.is_finite():
        raise ValueError(f"Invalid amount format: '{text}'")

    if amount < 0:
        raise ValueError(f"Invalid amount: '{text}'. Amount cannot be negative")

    # Enough precision that scaling to cents is exact for any input length
    with localcontext() as ctx:
        ctx.prec = len(amount.as_tuple().digits) + 3
        try:
            cents = amount * 100
        except ArithmeticError:
            raise ValueError(f"Invalid amount: '{text}'. Amount is out of range")

        if cents != cents.to_integral_value():
            raise ValueError(f"Invalid amount: '{text}'. At most two decimal places allowed")

    return int(cents)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Simulate a chip card transaction: read, confirm, validate, settle."
    )
    parser.add_argument('amount', help="Amount in major units, e.g. 5.00")
    parser.add_argument('--yes', '-y', action='store_true',
                        help="Skip the confirmation prompt")
    parser.add_argument('--chip-data', dest='chip_data',
                        help="YAML chip data profile (overrides CHIP_DATA_FILE)")
    parser.add_argument('--delay', type=float,
                        help="Settlement delay in seconds (overrides SETTLEMENT_DELAY_SECONDS)")
    return parser


def confirm(amount_display: str) -> bool:
    """Ask the user to confirm; a closed or non-interactive stdin means no."""
    try:
        answer = input(f"Send\nIs this information correct?\namount: {amount_display} [y/N] ")
    except EOFError:
        print()
        return False
    return answer.strip().lower() in ('y', 'yes')


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit code: 0 if the transaction settled, 1 otherwise
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as e:
        configure_logging()
        logger.error(f"Configuration error: {e}")
        return 1

    configure_logging(settings.log_level)

    if args.chip_data:
        settings = replace(settings, chip_data_file=args.chip_data)
    if args.delay is not None:
        if args.delay < 0:
            logger.error("Settlement delay cannot be negative")
            return 1
        settings = replace(settings, settlement_delay=args.delay)

    try:
        amount_cents = parse_amount_to_cents(args.amount)
    except ValueError as e:
        logger.error(str(e))
        return 1

    logger.info("=" * 50)
    logger.info("Chip Transaction Simulator - Starting")
    logger.info("=" * 50)

    coordinator = create_coordinator(settings, observer=lambda message: print(f"[status] {message}"))

    try:
        transaction = coordinator.start_transaction(amount_cents)
    except (SourceUnavailableError, TransactionInProgressError) as e:
        logger.error(f"Could not start transaction: {e}")
        return 1

    for record in transaction.records:
        print(f"  {record.tag_hex}  {record.description:<28} {record.value}")

    if not args.yes and not confirm(transaction.amount_display):
        coordinator.cancel_transaction()
        logger.info("Transaction cancelled")
        return 1

    done = threading.Event()
    result = {}

    def on_complete(success: bool) -> None:
        result['success'] = success
        done.set()

    submitted = coordinator.process_transaction(transaction, on_complete)
    if submitted:
        logger.info(f"Waiting {settings.settlement_delay:.1f}s for settlement...")
        done.wait()

    success = result.get('success', False)

    logger.info("=" * 50)
    logger.info(f"Amount:     {transaction.amount_display}")
    logger.info(f"Submitted:  {submitted}")
    logger.info(f"Settled:    {success}")
    if coordinator.last_outcome and coordinator.last_outcome.error:
        logger.info(f"Reason:     {coordinator.last_outcome.error}")
    logger.info("=" * 50)

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
