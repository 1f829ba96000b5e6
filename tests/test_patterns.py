"""
Tests for the behavioral pattern detectors, wallet categorization and
pattern-based risk scoring.
"""

from __future__ import annotations

import itertools

import pytest

from eth_wallet_analytics.models import Pattern, TransferSet, SENT, RECEIVED
from eth_wallet_analytics.patterns import (
    ACCUMULATION, BURST, COLLECTOR, CYCLICAL, DISTRIBUTION, DISTRIBUTOR, PERIODIC,
    ROUND_NUMBERS, WHALE,
    analyze_transaction_patterns,
    calculate_risk_score,
    categorize_wallet_behavior,
    detect_accumulation_pattern,
    detect_burst_activity,
    detect_cyclical_behavior,
    detect_distribution_patterns,
    detect_periodic_transfers,
    detect_round_number_transfers,
    detect_whale_transfers,
    risk_level,
)


def _detected(pattern_type, **details):
    return Pattern(type=pattern_type, is_detected=True, details=details)


# --- Periodic ---


def test_daily_transfers_are_periodic(make_tx):
    txs = [make_tx(1, hours=24 * i) for i in range(6)]
    pattern = detect_periodic_transfers(txs)

    assert pattern.is_detected
    assert pattern.details["period"] == "daily"
    assert pattern.confidence == 100


def test_periodic_orders_records_by_time(make_tx):
    txs = [make_tx(1, hours=24 * i) for i in range(6)]
    pattern = detect_periodic_transfers(list(reversed(txs)))

    assert pattern.is_detected
    assert pattern.details["average_interval"] == 24


def test_periodic_needs_five_timestamps(make_tx):
    txs = [make_tx(1, hours=24 * i) for i in range(4)] + [make_tx(1)]
    assert not detect_periodic_transfers(txs).is_detected


def test_irregular_intervals_not_periodic(make_tx):
    txs = [make_tx(1, hours=h) for h in (0, 1, 50, 51, 300)]
    assert not detect_periodic_transfers(txs).is_detected


# --- Round numbers ---


def test_round_number_transfers(make_tx):
    pattern = detect_round_number_transfers([make_tx(v) for v in ("1", "2.5", "3", "0.123")])
    assert pattern.is_detected
    assert pattern.confidence == 75
    assert pattern.details["round_number_count"] == 3


def test_mostly_odd_amounts_not_round(make_tx):
    pattern = detect_round_number_transfers([make_tx(v) for v in ("0.123", "0.456", "1.5")])
    assert not pattern.is_detected


# --- Distribution shapes ---


def test_seven_distinct_recipients_is_distributor(central, addr, make_tx):
    """Seven sends to seven addresses: distributor (capped at 90), no collector."""
    sent = [make_tx(1, SENT, addr(i)) for i in range(1, 8)]
    patterns = analyze_transaction_patterns(TransferSet(address=central, sent=sent))
    by_type = {p.type: p for p in patterns}

    assert DISTRIBUTOR in by_type
    assert COLLECTOR not in by_type
    assert by_type[DISTRIBUTOR].confidence == 90
    assert by_type[DISTRIBUTOR].details["unique_ratio"] == 1.0
    assert by_type[DISTRIBUTOR].importance == "medium"


def test_collector_pattern(addr, make_tx):
    received = [make_tx(1, RECEIVED, addr(i % 5 + 1)) for i in range(10)]
    patterns = detect_distribution_patterns(received)

    assert [p.type for p in patterns] == [COLLECTOR]
    assert patterns[0].confidence == 50


def test_high_fan_out_importance(addr, make_tx):
    sent = [make_tx(1, SENT, addr(i)) for i in range(1, 26)]
    pattern = detect_distribution_patterns(sent)[0]
    assert pattern.importance == "high"


# --- Whales ---


def test_whale_transfer_detected(make_tx):
    txs = [make_tx(1) for _ in range(19)] + [make_tx(1000)]
    pattern = detect_whale_transfers(txs)
    assert pattern.is_detected
    assert pattern.confidence == 85
    assert pattern.details["whale_transaction_count"] == 1


def test_whale_needs_five_values(make_tx):
    assert not detect_whale_transfers([make_tx(1), make_tx(1), make_tx(100)]).is_detected


# --- Accumulation ---


def test_steady_deposits_are_accumulation(make_tx):
    txs = [make_tx(1, RECEIVED, hours=i) for i in range(10)]
    pattern = detect_accumulation_pattern(txs)

    assert pattern.is_detected
    assert pattern.type == ACCUMULATION
    assert pattern.confidence == 100


def test_steady_withdrawals_are_distribution(make_tx):
    txs = [make_tx(1, SENT, hours=i) for i in range(10)]
    pattern = detect_accumulation_pattern(txs)
    assert pattern.is_detected
    assert pattern.type == DISTRIBUTION


def test_accumulation_needs_ten_timed_values(make_tx):
    txs = [make_tx(1, RECEIVED, hours=i) for i in range(9)]
    assert not detect_accumulation_pattern(txs).is_detected


# --- Bursts ---


def test_burst_activity(make_tx):
    txs = [make_tx(1, hours=h) for h in (0, 100, 100.01, 100.02, 100.03, 200)]
    pattern = detect_burst_activity(txs)

    assert pattern.is_detected
    assert pattern.confidence == 75
    assert pattern.details["burst_periods"] == 1
    assert pattern.details["largest_burst"] == 4


def test_evenly_spaced_is_not_burst(make_tx):
    assert not detect_burst_activity([make_tx(1, hours=h) for h in range(6)]).is_detected


# --- Cyclical ---


def test_weekly_activity_is_cyclical(make_tx):
    """Ten transfers all on Sundays."""
    txs = [make_tx(1, hours=168 * i) for i in range(10)]
    pattern = detect_cyclical_behavior(txs)

    assert pattern.is_detected
    assert pattern.confidence == 85
    assert pattern.details["popular_weekdays"] == ["Sunday"]


def test_spread_week_not_cyclical(make_tx):
    txs = [make_tx(1, hours=24 * i) for i in range(14)]
    assert not detect_cyclical_behavior(txs).is_detected


# --- Aggregate analysis ---


def test_untimestamped_history_degrades_quietly(central, addr, make_tx):
    """Time-based detectors skip records without timestamps."""
    received = [make_tx("0.37", RECEIVED, addr(1)) for _ in range(12)]
    patterns = analyze_transaction_patterns(TransferSet(address=central, received=received))
    assert patterns == []


def test_empty_history_has_no_patterns(central):
    assert analyze_transaction_patterns(TransferSet(address=central)) == []
    assert analyze_transaction_patterns([]) == []


# --- Categorization ---


def test_no_patterns_is_unknown():
    behavior = categorize_wallet_behavior([])
    assert behavior.type == "Unknown"
    assert behavior.confidence == 0


def test_trader_and_distributor_is_market_maker():
    behavior = categorize_wallet_behavior([_detected(WHALE), _detected(DISTRIBUTOR)])
    assert behavior.type == "Market Maker"
    assert behavior.confidence == 90
    assert behavior.behaviors == ["Trader", "Distributor"]


def test_regular_round_numbers_is_salary_account():
    behavior = categorize_wallet_behavior([_detected(PERIODIC), _detected(ROUND_NUMBERS)])
    assert behavior.type == "Salary/Regular Payment Account"
    assert behavior.confidence == 65


def test_accumulation_is_long_term_investor():
    behavior = categorize_wallet_behavior([_detected(ACCUMULATION)])
    assert behavior.type == "Long-term Investor"
    assert behavior.confidence == 75


def test_collector_only_is_general_user():
    assert categorize_wallet_behavior([_detected(COLLECTOR)]).type == "General User"


def test_confidence_capped_at_95():
    patterns = [_detected(t) for t in (WHALE, BURST, DISTRIBUTOR, COLLECTOR, PERIODIC, ACCUMULATION)]
    assert categorize_wallet_behavior(patterns).confidence == 95


# --- Risk ---


def test_no_patterns_risk_unknown():
    risk = calculate_risk_score([])
    assert risk.score == 0
    assert risk.level == "Unknown"


def test_risky_patterns_raise_score():
    risk = calculate_risk_score([_detected(WHALE), _detected(BURST)])
    assert risk.score == 75
    assert risk.level == "Medium"
    assert len(risk.risk_factors) == 2
    assert risk.protective_factors == []


def test_protective_patterns_lower_score():
    risk = calculate_risk_score([_detected(ROUND_NUMBERS), _detected(PERIODIC), _detected(CYCLICAL)])
    assert risk.score == 20
    assert risk.level == "Very Low"
    assert len(risk.protective_factors) == 3


def test_high_fan_out_adds_risk():
    assert calculate_risk_score([_detected(DISTRIBUTOR, unique_recipients=25)]).score == 58
    assert calculate_risk_score([_detected(DISTRIBUTOR, unique_recipients=7)]).score == 50


def test_risk_score_always_bounded():
    """Any combination of detected patterns scores within [0, 100]."""
    types = [WHALE, BURST, ROUND_NUMBERS, PERIODIC, CYCLICAL, COLLECTOR]
    for size in range(1, 6):
        for combo in itertools.combinations_with_replacement(types, size):
            score = calculate_risk_score([_detected(t) for t in combo]).score
            assert 0 <= score <= 100


@pytest.mark.parametrize("score, level", [
    (0, "Minimal"), (19, "Minimal"), (20, "Very Low"), (40, "Low"), (60, "Medium"), (80, "High"), (100, "High"),
])
def test_risk_levels(score, level):
    assert risk_level(score) == level
