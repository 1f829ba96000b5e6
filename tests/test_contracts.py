"""
Tests for contract detection and contract interaction analysis.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from eth_wallet_analytics.contracts import (
    TOP_CONTRACTS,
    ContractDetector,
    analyze_contract_interactions,
    categorize_interaction,
    filter_contract_interactions,
)
from eth_wallet_analytics.errors import ApiError
from eth_wallet_analytics.models import TransferSet, SENT, RECEIVED


def _code_client(contracts):
    client = MagicMock()
    client.fetch_code.side_effect = lambda a: "0x6080" if a in contracts else "0x"
    return client


# --- Detection ---


def test_detector_caches_answers(addr):
    client = _code_client({addr(1)})
    detector = ContractDetector(client)

    assert detector.is_contract(addr(1))
    assert detector.is_contract(addr(1).upper().replace("0X", "0x"))
    assert not detector.is_contract(addr(2))
    assert client.fetch_code.call_count == 2


def test_detector_retries_failed_lookups(addr):
    client = MagicMock()
    client.fetch_code.side_effect = [ApiError("timeout"), "0x6080"]
    detector = ContractDetector(client)

    assert not detector.is_contract(addr(1))
    assert detector.is_contract(addr(1))


def test_filter_keeps_contract_counterparties(central, addr, make_tx):
    to_contract = make_tx(1, SENT, addr(1))
    from_contract = make_tx(2, RECEIVED, addr(1))
    plain = make_tx(3, RECEIVED, addr(2))
    transfers = TransferSet(address=central, sent=[to_contract], received=[from_contract, plain])

    kept = filter_contract_interactions(ContractDetector(_code_client({addr(1)})), transfers)
    assert kept == [to_contract, from_contract]


def test_filter_without_transfers():
    assert filter_contract_interactions(ContractDetector(MagicMock()), None) == []


# --- Categories ---


def test_categorize_interaction(make_tx):
    assert categorize_interaction(make_tx(5, category="erc20", asset="USDC")) == "Token Transfer"
    assert categorize_interaction(make_tx(1, category="erc721")) == "NFT Transfer"
    assert categorize_interaction(make_tx(1, category="ERC1155")) == "NFT Transfer"
    assert categorize_interaction(make_tx(0)) == "Contract Call"
    assert categorize_interaction(make_tx("0.5")) == "ETH Transfer"


# --- Analysis ---


def test_empty_analysis():
    analysis = analyze_contract_interactions([])
    assert analysis.total_interactions == 0
    assert analysis.contracts_summary == []
    assert analysis.interaction_frequency.monthly == 0


def test_per_contract_summary(base_time, addr, make_tx):
    interactions = [
        make_tx(1, SENT, addr(1), hours=0, asset="ETH"),
        make_tx(0, SENT, addr(1), hours=48),
        make_tx("0.5", RECEIVED, addr(1), hours=24),
        make_tx(10, SENT, addr(2), hours=1, category="erc20", asset="USDC"),
    ]
    analysis = analyze_contract_interactions(interactions, now=base_time + timedelta(days=100))

    assert analysis.total_interactions == 4
    assert analysis.unique_contracts == 2
    top = analysis.contracts_summary[0]
    assert top.address == addr(1)
    assert top.interaction_count == 3
    assert top.first_interaction == base_time
    assert top.last_interaction == base_time + timedelta(hours=48)
    assert top.total_value_sent == Decimal("1")
    assert top.total_value_received == Decimal("0.5")
    assert top.categories == {"ETH Transfer": 2, "Contract Call": 1}
    assert analysis.categories == {"ETH Transfer": 2, "Contract Call": 1, "Token Transfer": 1}
    assert analysis.contracts_summary[1].name == "USDC"


def test_most_used_contracts_are_top_five(addr, make_tx):
    interactions = []
    for n in range(1, 8):
        interactions += [make_tx(1, SENT, addr(n)) for _ in range(n)]
    analysis = analyze_contract_interactions(interactions)

    assert len(analysis.most_used_contracts) == TOP_CONTRACTS
    assert [c.address for c in analysis.most_used_contracts] == [addr(n) for n in range(7, 2, -1)]


def test_interaction_frequency_windows(base_time, addr, make_tx):
    now = base_time + timedelta(days=40)
    interactions = [
        make_tx(1, SENT, addr(1), hours=40 * 24 - 2),  # within a day
        make_tx(1, SENT, addr(1), hours=40 * 24 - 72),  # within a week
        make_tx(1, SENT, addr(1), hours=40 * 24 - 20 * 24),  # within a month
        make_tx(1, SENT, addr(1), hours=0),  # older
        make_tx(1, SENT, addr(1)),  # no timestamp
    ]
    frequency = analyze_contract_interactions(interactions, now=now).interaction_frequency

    assert (frequency.daily, frequency.weekly, frequency.monthly) == (1, 2, 3)


def test_increasing_activity_trend(base_time, addr, make_tx):
    now = base_time + timedelta(days=30)
    recent = [make_tx(1, SENT, addr(1), hours=30 * 24 - h) for h in (1, 2)]
    old = [make_tx(1, SENT, addr(1), hours=0)]
    mostly_old = [make_tx(1, SENT, addr(2), hours=h) for h in (0, 1, 2)] + \
        [make_tx(1, SENT, addr(2), hours=30 * 24 - 1)]
    analysis = analyze_contract_interactions(recent + old + mostly_old, now=now)

    assert [t.contract for t in analysis.recent_trends] == [addr(1)]
    trend = analysis.recent_trends[0]
    assert trend.trend == "Increasing activity"
    assert (trend.recent_interactions, trend.total_interactions) == (2, 3)


def test_trend_needs_three_interactions(base_time, addr, make_tx):
    now = base_time + timedelta(days=1)
    interactions = [make_tx(1, SENT, addr(1), hours=h) for h in (10, 12)]
    assert analyze_contract_interactions(interactions, now=now).recent_trends == []
