"""
Transfer partner aggregation and per-partner anomaly detection.
"""

from typing import List, Dict, Optional, Iterable
from decimal import Decimal
import logging

from .models import (
    TransferSet, TransferRecord, TransferPartner, AnomalyResult, LargeTransfer, SENT)
from . import stats

logger = logging.getLogger(__name__)

LARGE_TRANSFER_SIGMA = 2
MIN_LARGE_TRANSFER_SAMPLES = 3
MIN_FREQUENCY_SAMPLES = 3
UNUSUAL_FREQUENCY_CV = 1.5
MIN_IRREGULAR_SAMPLES = 4
CASH_OUT_MULTIPLIER = 5


def detect_anomalies(transactions: Iterable[TransferRecord]) -> AnomalyResult:
    """Flag large transfers, irregular timing and build-up-then-cash-out shapes."""
    transactions = list(transactions)
    anomalies = AnomalyResult()

    if not transactions:
        return anomalies

    values = [float(tx.value) for tx in transactions]
    mean = stats.mean(values)
    std_dev = stats.std_dev(values)

    # Large transfers: more than two standard deviations above the mean
    if len(values) >= MIN_LARGE_TRANSFER_SAMPLES and std_dev > 0:
        threshold = mean + LARGE_TRANSFER_SIGMA * std_dev
        for tx, value in zip(transactions, values):
            if value > threshold:
                anomalies.large_transfers.append(LargeTransfer(
                    tx_hash=tx.hash,
                    value=value,
                    ratio=(value - mean) / std_dev,
                ))

    # Irregular timing: high dispersion of inter-arrival intervals
    timestamps = sorted(tx.timestamp.timestamp() for tx in transactions if tx.timestamp)
    if len(timestamps) >= MIN_FREQUENCY_SAMPLES:
        interval_cv = stats.coefficient_of_variation(stats.intervals(timestamps))
        anomalies.unusual_frequency = interval_cv > UNUSUAL_FREQUENCY_CV

    # Build-up then cash-out: latest transfer dwarfs everything before it
    if len(values) >= MIN_IRREGULAR_SAMPLES:
        chronological = [float(tx.value) for tx in sorted(transactions, key=lambda tx: tx.block_number)]
        prior_mean = stats.mean(chronological[:-1])
        anomalies.irregular_pattern = chronological[-1] > prior_mean * CASH_OUT_MULTIPLIER

    return anomalies


def aggregate_transfer_partners(transfers: TransferSet,
                                annotations: Optional[Dict[str, str]] = None) -> List[TransferPartner]:
    """Group transfers by counterparty.

    Sent transfers are keyed by recipient and received transfers by sender;
    both collapse into one TransferPartner per address. The result is sorted
    by total volume, largest first, and every partner carries its anomalies.
    """
    annotations = annotations or {}
    partners: Dict[str, TransferPartner] = {}

    for tx in transfers.sent + transfers.received:
        if not tx.counterparty:
            logger.warning(f"Skipping transfer {tx.hash} without counterparty")
            continue

        partner = partners.get(tx.counterparty)
        if partner is None:
            partner = TransferPartner(
                address=tx.counterparty,
                annotation=annotations.get(tx.counterparty, ''),
            )
            partners[tx.counterparty] = partner

        if tx.direction == SENT:
            partner.total_sent += tx.value
        else:
            partner.total_received += tx.value
        partner.transactions.append(tx)

    for partner in partners.values():
        partner.anomalies = detect_anomalies(partner.transactions)

    logger.info(f"Aggregated {len(transfers.all)} transfers into {len(partners)} partners")
    return sorted(partners.values(), key=lambda p: p.total_volume, reverse=True)


def total_value(records: Iterable[TransferRecord]) -> Decimal:
    return sum((tx.value for tx in records), Decimal('0'))
