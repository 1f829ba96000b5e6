"""
Contract interaction analysis: which smart contracts an address deals with,
how often, in which way, and whether that usage is picking up.
"""

from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
import logging

from .errors import ApiError
from .models import (
    TransferRecord, TransferSet, ContractSummary, InteractionFrequency, ContractTrend,
    ContractAnalysis, SENT)
from .utils import normalize_address

logger = logging.getLogger(__name__)

# Asset transfer categories that can involve a contract
CONTRACT_CATEGORIES = ["external", "internal", "erc20", "erc721", "erc1155"]
EMPTY_CODE = ("0x", "0x0", "")
TOP_CONTRACTS = 5
MIN_TREND_INTERACTIONS = 3
RECENT_SHARE = 0.5


class ContractDetector:
    """Tells contracts from plain accounts by their deployed code.

    Answers are cached per address; failed lookups are not, so a later call
    retries them.
    """

    def __init__(self, client):
        self.client = client
        self._cache: Dict[str, bool] = {}

    def is_contract(self, address: str) -> bool:
        address = normalize_address(address)
        if address in self._cache:
            return self._cache[address]

        try:
            code = self.client.fetch_code(address)
        except ApiError as e:
            logger.warning(f"Error checking if {address} is a contract: {e}")
            return False

        self._cache[address] = code not in EMPTY_CODE
        return self._cache[address]


def filter_contract_interactions(detector: ContractDetector,
                                 transfers: Optional[TransferSet]) -> List[TransferRecord]:
    """Transfers sent to or received from a contract, sent ones first."""
    if transfers is None:
        return []
    return [tx for tx in transfers.sent + transfers.received
            if tx.counterparty and detector.is_contract(tx.counterparty)]


def categorize_interaction(tx: TransferRecord) -> str:
    category = (tx.category or '').lower()
    if category == 'erc20':
        return 'Token Transfer'
    if category in ('erc721', 'erc1155'):
        return 'NFT Transfer'
    if tx.value == 0:
        # Zero-value calls change contract state
        return 'Contract Call'
    return 'ETH Transfer'


def _recent(interactions: Sequence[TransferRecord], since: datetime) -> List[TransferRecord]:
    return [tx for tx in interactions if tx.timestamp is not None and tx.timestamp > since]


def analyze_contract_interactions(interactions: Sequence[TransferRecord],
                                  now: Optional[datetime] = None) -> ContractAnalysis:
    """Summarise contract interactions per contract, per category and over time.

    Frequencies count interactions in the last day, week and 30 days before
    now. A contract with at least three interactions, more than half of them
    in the last week, is reported as increasing activity.
    """
    if not interactions:
        return ContractAnalysis()

    now = now or datetime.now(timezone.utc)
    week_ago = now - timedelta(days=7)

    contracts: Dict[str, ContractSummary] = {}
    categories: Counter = Counter()
    for tx in interactions:
        contract = contracts.get(tx.counterparty)
        if contract is None:
            contract = contracts[tx.counterparty] = ContractSummary(
                address=tx.counterparty, name=tx.asset or 'Unknown')

        contract.interaction_count += 1
        if tx.timestamp is not None:
            if contract.first_interaction is None or tx.timestamp < contract.first_interaction:
                contract.first_interaction = tx.timestamp
            if contract.last_interaction is None or tx.timestamp > contract.last_interaction:
                contract.last_interaction = tx.timestamp

        value = tx.value or Decimal('0')
        if tx.direction == SENT:
            contract.total_value_sent += value
        else:
            contract.total_value_received += value

        category = categorize_interaction(tx)
        contract.categories[category] = contract.categories.get(category, 0) + 1
        categories[category] += 1

    summary = sorted(contracts.values(), key=lambda c: c.interaction_count, reverse=True)

    recent_by_contract = Counter(tx.counterparty for tx in _recent(interactions, week_ago))
    trends = [
        ContractTrend(
            contract=c.address,
            name=c.name,
            trend='Increasing activity',
            recent_interactions=recent_by_contract[c.address],
            total_interactions=c.interaction_count,
        )
        for c in summary
        if c.interaction_count >= MIN_TREND_INTERACTIONS
        and recent_by_contract[c.address] > c.interaction_count * RECENT_SHARE
    ]

    logger.info(f"Analyzed {len(interactions)} interactions with {len(summary)} contracts")
    return ContractAnalysis(
        total_interactions=len(interactions),
        unique_contracts=len(summary),
        contracts_summary=summary,
        categories=dict(categories),
        most_used_contracts=summary[:TOP_CONTRACTS],
        interaction_frequency=InteractionFrequency(
            daily=len(_recent(interactions, now - timedelta(days=1))),
            weekly=len(_recent(interactions, week_ago)),
            monthly=len(_recent(interactions, now - timedelta(days=30))),
        ),
        recent_trends=trends,
    )
