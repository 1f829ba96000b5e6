"""
Utility functions for parsing and formatting blockchain data.
"""

from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import re
import logging

from .models import TransferRecord, TransferSet, SENT, RECEIVED

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal('1000000000000000000')
WEI_PER_GWEI = Decimal('1000000000')


def is_valid_ethereum_address(address: str) -> bool:
    """Check if a string is a valid Ethereum address."""
    if not address:
        return False

    # Remove 0x prefix if present
    if address.startswith('0x'):
        address = address[2:]

    # Check if it's 40 hex characters
    return bool(re.match(r'^[0-9a-fA-F]{40}$', address))


def normalize_address(address: str) -> str:
    """Normalize an Ethereum address to lowercase with 0x prefix."""
    if not address:
        return ""

    address = address.lower()
    if not address.startswith('0x'):
        address = '0x' + address

    return address


def wei_to_ether(wei) -> Decimal:
    """Convert Wei to Ether."""
    try:
        return Decimal(wei) / WEI_PER_ETHER
    except (ValueError, TypeError, InvalidOperation) as e:
        logger.warning(f"Error converting wei to ether: {wei}, error: {e}")
        return Decimal('0')


def wei_to_gwei(wei) -> float:
    """Convert Wei to Gwei as a float for display and averaging."""
    try:
        return float(Decimal(wei) / WEI_PER_GWEI)
    except (ValueError, TypeError, InvalidOperation) as e:
        logger.warning(f"Error converting wei to gwei: {wei}, error: {e}")
        return 0.0


def hex_to_int(value) -> Optional[int]:
    """Decode a JSON-RPC quantity ('0x1a', 26 or '26'); None when absent or unreadable."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        text = str(value).strip()
        if text.lower().startswith('0x'):
            return int(text, 16)
        return int(text)
    except (ValueError, TypeError):
        return None


def parse_decimal(value) -> Decimal:
    """Parse a transfer amount; unreadable values count as zero."""
    if value is None:
        return Decimal('0')
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Unparseable transfer value {value!r}, using 0")
        return Decimal('0')
    if not parsed.is_finite():
        logger.warning(f"Non-finite transfer value {value!r}, using 0")
        return Decimal('0')
    return parsed


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 block timestamp into an aware UTC datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning(f"Unparseable block timestamp {value!r}: {e}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_transfer(raw: Dict[str, Any], direction: str) -> Optional[TransferRecord]:
    """Parse a raw asset transfer into a TransferRecord, or None when malformed."""
    counterparty_field = 'to' if direction == SENT else 'from'
    counterparty = raw.get(counterparty_field)
    if not counterparty:
        logger.warning(
            f"Skipping {direction} transfer {raw.get('hash', 'unknown')} without '{counterparty_field}'")
        return None

    metadata = raw.get('metadata') or {}
    block_number = hex_to_int(raw.get('blockNum'))

    return TransferRecord(
        hash=raw.get('hash') or '',
        block_number=block_number if block_number is not None else 0,
        value=parse_decimal(raw.get('value')),
        asset=raw.get('asset') or 'ETH',
        direction=direction,
        counterparty=normalize_address(counterparty),
        timestamp=parse_timestamp(metadata.get('blockTimestamp')),
        category=raw.get('category') or 'external',
    )


def parse_transfers(address: str, raw_transfers: Dict[str, List[Dict[str, Any]]]) -> Tuple[TransferSet, int]:
    """Parse the {sent, received} payload of the data API.

    Returns the parsed TransferSet and the number of records that were
    skipped as malformed.
    """
    transfer_set = TransferSet(address=normalize_address(address))
    skipped = 0

    for direction, target in ((SENT, transfer_set.sent), (RECEIVED, transfer_set.received)):
        for raw in raw_transfers.get(direction) or []:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping non-object {direction} transfer: {raw!r}")
                skipped += 1
                continue
            record = parse_transfer(raw, direction)
            if record is None:
                skipped += 1
                continue
            target.append(record)

    logger.info(
        f"Parsed {len(transfer_set.sent)} sent and {len(transfer_set.received)} received "
        f"transfers for {transfer_set.address} ({skipped} skipped)")
    return transfer_set, skipped


def is_round_number(amount: Decimal) -> bool:
    """True for positive amounts with at most one decimal place (1, 0.5, 2.3, 100)."""
    if amount is None or amount <= 0:
        return False
    return amount.normalize().as_tuple().exponent >= -1


def round_number_kind(amount: Decimal) -> str:
    """Classify an amount as 'whole', 'half', 'tenth' or 'other'."""
    if amount == amount.to_integral_value():
        return 'whole'
    if (amount * 2) == (amount * 2).to_integral_value():
        return 'half'
    if (amount * 10) == (amount * 10).to_integral_value():
        return 'tenth'
    return 'other'


def format_number(number, decimals: int = 2) -> str:
    """Format a number with K/M/B suffixes."""
    try:
        if number == 0:
            return "0"

        # Convert to float for formatting
        num = float(number)

        if num >= 1_000_000_000:
            return f"{num / 1_000_000_000:.{decimals}f}B"
        elif num >= 1_000_000:
            return f"{num / 1_000_000:.{decimals}f}M"
        elif num >= 1_000:
            return f"{num / 1_000:.{decimals}f}K"
        else:
            return f"{num:.{decimals}f}"
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning(f"Error formatting number {number}: {e}")
        return str(number)
