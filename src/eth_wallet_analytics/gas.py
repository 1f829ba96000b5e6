"""
Gas usage analysis: receipt retrieval, aggregate statistics and
rule-based optimization tips.
"""

from concurrent.futures import ThreadPoolExecutor
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
import logging

from .errors import MissingInputError
from .models import (
    TransferRecord, GasReceipt, GasRecord, GasAnalysis, GasDistribution, GasTimePoint,
    WastageAnalysis, GasTip, GasOptimization)
from .utils import WEI_PER_ETHER, wei_to_gwei
from . import stats

logger = logging.getLogger(__name__)

LOW_EFFICIENCY_WASTE_PERCENT = 20
VERY_HIGH_GAS_SHARE = 0.3
MIN_TIME_SERIES_POINTS = 5
HOURLY_PRICE_SPREAD = 1.3
EIP1559_MIN_TRANSACTIONS = 10


def _build_record(tx: TransferRecord, receipt: Optional[GasReceipt]) -> Optional[GasRecord]:
    if receipt is None or receipt.gas_used is None:
        return None

    gas_fee = Decimal('0')
    if receipt.effective_gas_price is not None:
        gas_fee = Decimal(receipt.gas_used * receipt.effective_gas_price) / WEI_PER_ETHER

    return GasRecord(
        hash=tx.hash,
        gas_used=receipt.gas_used,
        effective_gas_price=receipt.effective_gas_price,
        gas_limit=receipt.gas_limit,
        gas_fee=gas_fee,
        timestamp=tx.timestamp,
        status=receipt.status,
        block_number=receipt.block_number if receipt.block_number is not None else tx.block_number,
    )


def fetch_gas_records(client, transactions: Sequence[TransferRecord],
                      max_workers: int = 8) -> Tuple[List[GasRecord], int]:
    """Join transactions with their receipts.

    Receipt lookups are independent reads and run concurrently. A failed
    lookup excludes that transaction only. Returns the gas records (in input
    order) and the number of failed lookups.
    """
    if client is None:
        raise MissingInputError("A data API client is required to fetch transaction receipts")

    # The same hash can appear twice (e.g. a self transfer); fetch it once
    unique = list({tx.hash: tx for tx in transactions if tx.hash}.values())
    if not unique:
        return [], 0

    def fetch(tx: TransferRecord):
        try:
            return tx, client.fetch_transaction_receipt(tx.hash), None
        except Exception as e:
            return tx, None, e

    records: List[GasRecord] = []
    failed = 0
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(unique)))) as pool:
        for tx, receipt, error in pool.map(fetch, unique):
            if error is not None:
                logger.warning(f"Error fetching receipt for transaction {tx.hash}: {error}")
                failed += 1
                continue
            record = _build_record(tx, receipt)
            if record is not None:
                records.append(record)

    logger.info(f"Fetched gas data for {len(records)} of {len(unique)} transactions ({failed} failed)")
    return records, failed


def analyze_gas_usage(records: Optional[Sequence[GasRecord]]) -> GasAnalysis:
    """Aggregate gas statistics; an empty input yields an all-zero GasAnalysis."""
    if not records:
        return GasAnalysis()

    priced = [r for r in records if r.gas_used is not None and r.effective_gas_price is not None]
    if not priced:
        return GasAnalysis()

    gas_used_values = [r.gas_used for r in priced]
    total_gas_used = sum(gas_used_values)
    total_gas_fee = sum((r.gas_fee for r in priced), Decimal('0'))
    average_gas_price = wei_to_gwei(sum(r.effective_gas_price for r in priced)) / len(priced)

    highest = max(priced, key=lambda r: r.gas_used)
    lowest = min(priced, key=lambda r: r.gas_used)

    time_series = [
        GasTimePoint(
            timestamp=r.timestamp,
            gas_used=r.gas_used,
            gas_price_gwei=wei_to_gwei(r.effective_gas_price),
            gas_fee=r.gas_fee,
        )
        for r in sorted((r for r in priced if r.timestamp), key=lambda r: r.timestamp)
    ]

    # Five equal-width buckets over the observed min..max of this sample
    min_gas, max_gas = min(gas_used_values), max(gas_used_values)
    segment = (max_gas - min_gas) / 5
    thresholds = [min_gas + segment * i for i in range(1, 5)]
    distribution = GasDistribution()
    for gas in gas_used_values:
        if gas <= thresholds[0]:
            distribution.very_low += 1
        elif gas <= thresholds[1]:
            distribution.low += 1
        elif gas <= thresholds[2]:
            distribution.medium += 1
        elif gas <= thresholds[3]:
            distribution.high += 1
        else:
            distribution.very_high += 1

    wastage = WastageAnalysis()
    gas_efficiency = 0.0
    limited = [r for r in priced if r.gas_limit]
    if limited:
        total_limit = sum(r.gas_limit for r in limited)
        total_used = sum(r.gas_used for r in limited)
        gas_efficiency = min(100.0, max(0.0, total_used / total_limit * 100))
        wasted = [max(0, r.gas_limit - r.gas_used) for r in limited]
        wastage = WastageAnalysis(
            total_wasted_gas=sum(wasted),
            percentage_wasted=100 - gas_efficiency,
            potential_savings=sum(
                (Decimal(w * r.effective_gas_price) for w, r in zip(wasted, limited)),
                Decimal('0')) / WEI_PER_ETHER,
        )

    return GasAnalysis(
        total_transactions=len(priced),
        total_gas_used=total_gas_used,
        total_gas_fee=total_gas_fee,
        average_gas_per_transaction=total_gas_used / len(priced),
        average_gas_price_gwei=average_gas_price,
        median_gas_per_transaction=stats.median(gas_used_values),
        gas_efficiency=gas_efficiency,
        time_series=time_series,
        highest_gas_tx=highest,
        lowest_gas_tx=lowest,
        gas_distribution=distribution,
        wastage_analysis=wastage,
    )


def _utc_hour(moment: datetime) -> int:
    if moment.tzinfo is None:
        return moment.hour
    return moment.astimezone(timezone.utc).hour


def _timing_tip(time_series: Sequence[GasTimePoint]) -> Optional[GasTip]:
    hourly = defaultdict(list)
    for point in time_series:
        hourly[_utc_hour(point.timestamp)].append(point.gas_price_gwei)
    averages = {hour: stats.mean(prices) for hour, prices in hourly.items()}

    lowest_hour = min(averages, key=averages.get)
    highest_hour = max(averages, key=averages.get)
    lowest_price, highest_price = averages[lowest_hour], averages[highest_hour]

    if lowest_price <= 0 or highest_price <= lowest_price * HOURLY_PRICE_SPREAD:
        return None

    return GasTip(
        title="Time Your Transactions",
        description=f"Gas prices are typically {highest_price / lowest_price:.1f}x lower at around "
                    f"{lowest_hour}:00 UTC compared to {highest_hour}:00 UTC.",
        savings_potential="Medium",
        implementation=f"For non-urgent transactions, schedule them around {lowest_hour}:00 UTC "
                       f"to save on gas costs.",
    )


def get_gas_optimization_tips(analysis: Optional[GasAnalysis]) -> GasOptimization:
    """Derive optimization recommendations from a gas analysis.

    Always returns at least two tips when there is data to analyze.
    """
    if analysis is None or analysis.total_transactions == 0:
        return GasOptimization(tips=[GasTip(
            title="No Gas Data",
            description="No gas usage data available for analysis. Try with transactions "
                        "that have detailed gas information.",
            savings_potential="None",
        )])

    tips: List[GasTip] = []
    wastage = analysis.wastage_analysis

    if wastage.percentage_wasted > LOW_EFFICIENCY_WASTE_PERCENT:
        tips.append(GasTip(
            title="Reduce Gas Limits",
            description=f"Your transactions use only {analysis.gas_efficiency:.1f}% of allocated gas "
                        f"limits. Consider using lower gas limits to reduce potential costs.",
            savings_potential="High",
            implementation="Set more accurate gas limits by estimating based on contract "
                           "interactions or using historical data.",
        ))

    if analysis.gas_distribution.very_high > analysis.total_transactions * VERY_HIGH_GAS_SHARE:
        tips.append(GasTip(
            title="Optimize Contract Interactions",
            description="A significant number of your transactions use very high gas. "
                        "Consider optimizing complex contract interactions.",
            savings_potential="Medium",
            implementation="Batch operations when possible, reduce storage operations, "
                           "and optimize contract code.",
        ))

    if len(analysis.time_series) >= MIN_TIME_SERIES_POINTS:
        timing = _timing_tip(analysis.time_series)
        if timing is not None:
            tips.append(timing)

    if analysis.total_transactions > EIP1559_MIN_TRANSACTIONS:
        tips.append(GasTip(
            title="Use EIP-1559 Transactions",
            description="EIP-1559 transactions can help save on gas costs by setting a max fee "
                        "and allowing the network to determine the actual price.",
            savings_potential="Low to Medium",
            implementation="Configure your wallet to use EIP-1559 transaction types when "
                           "submitting transactions.",
        ))

    if len(tips) < 2:
        tips.append(GasTip(
            title="Batch Transactions When Possible",
            description="Multiple small operations can be combined into a single transaction "
                        "to save on base gas costs.",
            savings_potential="Medium",
            implementation="Use multi-call contracts or batch functions when available in "
                           "contracts you interact with.",
        ))
        tips.append(GasTip(
            title="Monitor Network Congestion",
            description="Ethereum gas prices vary significantly with network congestion. "
                        "Non-urgent transactions can wait for lower gas periods.",
            savings_potential="Medium",
            implementation="Use gas price tracking tools to monitor network congestion and "
                           "time your transactions accordingly.",
        ))

    return GasOptimization(
        tips=tips,
        has_potential_savings=wastage.potential_savings > 0,
        potential_saving_percentage=wastage.percentage_wasted,
    )
