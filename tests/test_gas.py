"""
Tests for gas receipt retrieval, gas statistics and optimization tips.

Receipt lookups use a MagicMock client whose fetch_transaction_receipt
returns GasReceipt objects or raises.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from eth_wallet_analytics.errors import ApiError, MissingInputError
from eth_wallet_analytics.gas import analyze_gas_usage, fetch_gas_records, get_gas_optimization_tips
from eth_wallet_analytics.models import GasAnalysis, GasReceipt, GasRecord

GWEI = 10 ** 9


def _record(gas_used, gas_limit=None, price_gwei=20, when=None, tx_hash="0x01"):
    price = price_gwei * GWEI
    return GasRecord(
        hash=tx_hash,
        gas_used=gas_used,
        effective_gas_price=price,
        gas_limit=gas_limit,
        gas_fee=Decimal(gas_used * price) / Decimal(10 ** 18),
        timestamp=when,
    )


# --- Receipt retrieval ---


def test_fetch_requires_client(make_tx):
    with pytest.raises(MissingInputError):
        fetch_gas_records(None, [make_tx(1)])


def test_fetch_builds_records_and_counts_failures(make_tx):
    """A failed lookup excludes only that transaction; null receipts are dropped."""
    ok, failing, missing, no_gas = (make_tx(1, hours=i) for i in range(4))
    receipts = {
        ok.hash: GasReceipt(gas_used=21000, effective_gas_price=20 * GWEI, gas_limit=30000),
        missing.hash: None,
        no_gas.hash: GasReceipt(gas_used=None, effective_gas_price=20 * GWEI),
    }

    def fetch(tx_hash):
        if tx_hash == failing.hash:
            raise ApiError("boom")
        return receipts[tx_hash]

    client = MagicMock()
    client.fetch_transaction_receipt.side_effect = fetch

    records, failed = fetch_gas_records(client, [ok, failing, missing, no_gas], max_workers=2)

    assert failed == 1
    assert [r.hash for r in records] == [ok.hash]
    record = records[0]
    assert record.gas_fee == Decimal("0.00042")
    assert record.gas_limit == 30000
    assert record.timestamp == ok.timestamp


def test_fetch_deduplicates_hashes(make_tx):
    first = make_tx(1, tx_hash="0xabc")
    second = make_tx(1, tx_hash="0xabc")
    client = MagicMock()
    client.fetch_transaction_receipt.return_value = GasReceipt(gas_used=21000, effective_gas_price=GWEI)

    records, failed = fetch_gas_records(client, [first, second])

    assert client.fetch_transaction_receipt.call_count == 1
    assert len(records) == 1
    assert failed == 0


# --- Statistics ---


def test_empty_records_give_zeroed_analysis():
    """No gas records yields the all-zero structure, not an exception."""
    analysis = analyze_gas_usage([])
    assert analysis == GasAnalysis()
    assert analysis.total_transactions == 0
    assert analysis.total_gas_fee == 0
    assert analysis.time_series == []
    assert analysis.highest_gas_tx is None
    assert analyze_gas_usage(None) == GasAnalysis()


def test_totals_and_median():
    records = [_record(100), _record(300), _record(200)]
    analysis = analyze_gas_usage(records)

    assert analysis.total_transactions == 3
    assert analysis.total_gas_used == 600
    assert analysis.average_gas_per_transaction == pytest.approx(200)
    assert analysis.median_gas_per_transaction == 200
    assert analysis.average_gas_price_gwei == pytest.approx(20)
    assert analysis.highest_gas_tx.gas_used == 300
    assert analysis.lowest_gas_tx.gas_used == 100
    assert analyze_gas_usage(records + [_record(400)]).median_gas_per_transaction == 250


def test_distribution_equal_width_buckets():
    analysis = analyze_gas_usage([_record(g) for g in (10, 20, 30, 40, 50)])
    d = analysis.gas_distribution
    assert (d.very_low, d.low, d.medium, d.high, d.very_high) == (1, 1, 1, 1, 1)


def test_time_series_sorted(base_time):
    late = _record(100, when=base_time + timedelta(hours=5))
    early = _record(200, when=base_time)
    untimed = _record(300)
    analysis = analyze_gas_usage([late, early, untimed])

    assert [p.timestamp for p in analysis.time_series] == [early.timestamp, late.timestamp]


def test_efficiency_and_wastage():
    records = [_record(21000, gas_limit=30000), _record(50000, gas_limit=100000)]
    analysis = analyze_gas_usage(records)

    assert analysis.gas_efficiency == pytest.approx(71000 / 130000 * 100)
    wastage = analysis.wastage_analysis
    assert wastage.total_wasted_gas == 9000 + 50000
    assert wastage.percentage_wasted == pytest.approx(100 - 71000 / 130000 * 100)
    assert wastage.potential_savings == Decimal(59000 * 20 * GWEI) / Decimal(10 ** 18)


@pytest.mark.parametrize("records", [
    [_record(21000, gas_limit=30000)],
    [_record(50000, gas_limit=21000)],
    [_record(0, gas_limit=21000), _record(21000, gas_limit=21000)],
])
def test_efficiency_bounded(records):
    """Efficiency stays within [0, 100] whenever limits exist."""
    assert 0 <= analyze_gas_usage(records).gas_efficiency <= 100


def test_efficiency_zero_without_limits():
    assert analyze_gas_usage([_record(21000), _record(30000)]).gas_efficiency == 0


# --- Tips ---


def test_no_data_tip():
    tips = get_gas_optimization_tips(GasAnalysis())
    assert [t.title for t in tips.tips] == ["No Gas Data"]
    assert not tips.has_potential_savings


def test_specific_tips():
    analysis = analyze_gas_usage([_record(21000, gas_limit=30000), _record(50000, gas_limit=100000)])
    tips = get_gas_optimization_tips(analysis)

    assert [t.title for t in tips.tips] == ["Reduce Gas Limits", "Optimize Contract Interactions"]
    assert tips.has_potential_savings
    assert tips.potential_saving_percentage == pytest.approx(analysis.wastage_analysis.percentage_wasted)


def test_timing_tip_and_generic_fill(base_time):
    """Cheap and expensive UTC hours trigger a timing tip; generic tips pad to two."""
    records = [
        _record(21000, price_gwei=10, when=base_time + timedelta(hours=3)),
        _record(21000, price_gwei=10, when=base_time + timedelta(days=1, hours=3)),
        _record(21000, price_gwei=30, when=base_time + timedelta(hours=15)),
        _record(21000, price_gwei=30, when=base_time + timedelta(days=1, hours=15)),
        _record(21000, price_gwei=30, when=base_time + timedelta(days=2, hours=15)),
    ]
    tips = get_gas_optimization_tips(analyze_gas_usage(records))
    titles = [t.title for t in tips.tips]

    assert titles[0] == "Time Your Transactions"
    assert "3:00 UTC" in tips.tips[0].implementation
    assert "Batch Transactions When Possible" in titles
    assert "Monitor Network Congestion" in titles


def test_always_at_least_two_tips():
    tips = get_gas_optimization_tips(analyze_gas_usage([_record(21000)]))
    assert len(tips.tips) >= 2


def test_eip1559_tip_for_many_transactions():
    records = [_record(21000 + i) for i in range(11)]
    titles = [t.title for t in get_gas_optimization_tips(analyze_gas_usage(records)).tips]
    assert "Use EIP-1559 Transactions" in titles
