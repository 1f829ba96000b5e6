"""
End-to-end analysis of one address: fetch, aggregate, detect, score.
"""

from collections import OrderedDict
from typing import Dict, Optional, Tuple
from datetime import datetime
import logging

from .config import Config, ClusteringConfig
from .errors import MissingInputError
from .models import AddressReport, TransferSet, GasReport, ClusteringResult, ContractAnalysis
from .utils import is_valid_ethereum_address, normalize_address, parse_transfers
from .partners import aggregate_transfer_partners
from .gas import fetch_gas_records, analyze_gas_usage, get_gas_optimization_tips
from .patterns import analyze_transaction_patterns, categorize_wallet_behavior, calculate_risk_score
from .clustering import identify_related_addresses, assess_cluster_risk
from .contracts import (
    CONTRACT_CATEGORIES, ContractDetector, filter_contract_interactions, analyze_contract_interactions)

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, frozenset]

# Results kept per cache; the least recently used entry goes first
MAX_CACHED_RESULTS = 32


class WalletAnalyzer:
    """Runs every analysis stage for an address.

    Gas and clustering results are memoised per address and transfer set, so
    re-analysing unchanged history does not repeat receipt lookups.
    """

    def __init__(self, client, config: Optional[Config] = None, receipt_client=None,
                 annotations: Optional[Dict[str, str]] = None):
        if client is None:
            raise MissingInputError("A data API client is required")
        self.client = client
        self.receipt_client = receipt_client or client
        self.config = config
        self.annotations = annotations or {}
        self.contract_detector = ContractDetector(self.receipt_client)
        self._gas_cache: "OrderedDict[CacheKey, GasReport]" = OrderedDict()
        self._cluster_cache: "OrderedDict[CacheKey, ClusteringResult]" = OrderedDict()

    @property
    def max_gas_transactions(self) -> int:
        return self.config.max_gas_transactions if self.config else 50

    @property
    def receipt_workers(self) -> int:
        return self.config.receipt_workers if self.config else 8

    @property
    def clustering_config(self) -> ClusteringConfig:
        return self.config.clustering if self.config else ClusteringConfig()

    @staticmethod
    def _cached(cache: OrderedDict, key: CacheKey, compute):
        if key in cache:
            cache.move_to_end(key)
            return cache[key]
        value = cache[key] = compute()
        while len(cache) > MAX_CACHED_RESULTS:
            cache.popitem(last=False)
        return value

    def gas_report(self, transfers: TransferSet) -> GasReport:
        def compute() -> GasReport:
            recent = sorted(transfers.all, key=lambda tx: tx.block_number, reverse=True)
            recent = recent[:self.max_gas_transactions]
            records, failed = fetch_gas_records(self.receipt_client, recent, self.receipt_workers)
            return GasReport(records=records, analysis=analyze_gas_usage(records), failed_receipts=failed)

        key = (transfers.address, transfers.fingerprint())
        if key in self._gas_cache:
            logger.info(f"Using cached gas analysis for {transfers.address}")
        return self._cached(self._gas_cache, key, compute)

    def clusters(self, partners, transfers: TransferSet) -> ClusteringResult:
        key = (transfers.address, transfers.fingerprint())
        return self._cached(self._cluster_cache, key,
                            lambda: identify_related_addresses(partners, transfers, self.clustering_config))

    def contract_analysis(self, address: str, from_block: Optional[int] = None,
                          to_block: Optional[int] = None) -> ContractAnalysis:
        """Fetch every transfer category, including zero-value calls, and analyze the contract ones."""
        raw = self.client.fetch_transfers(address, from_block=from_block, to_block=to_block,
                                          categories=CONTRACT_CATEGORIES, exclude_zero_value=False)
        transfers, _ = parse_transfers(address, raw)
        interactions = filter_contract_interactions(self.contract_detector, transfers)
        return analyze_contract_interactions(interactions)

    def analyze(self, address: str, include_gas: bool = True, include_clusters: bool = True,
                from_block: Optional[int] = None, to_block: Optional[int] = None,
                include_contracts: bool = False) -> AddressReport:
        if not is_valid_ethereum_address(address):
            raise MissingInputError(f"Invalid Ethereum address: {address!r}")
        address = normalize_address(address)

        raw = self.client.fetch_transfers(address, from_block=from_block, to_block=to_block)
        transfers, skipped = parse_transfers(address, raw)

        partners = aggregate_transfer_partners(transfers, self.annotations)
        patterns = analyze_transaction_patterns(transfers)

        report = AddressReport(
            address=address,
            partners=partners,
            patterns=patterns,
            behavior=categorize_wallet_behavior(patterns),
            risk=calculate_risk_score(patterns),
            skipped_records=skipped,
            analysis_date=datetime.now(),
        )
        if skipped:
            report.warnings.append(f"Skipped {skipped} malformed transfer records")

        if include_gas:
            report.gas = self.gas_report(transfers)
            report.gas_tips = get_gas_optimization_tips(report.gas.analysis)
            if report.gas.failed_receipts:
                report.warnings.append(
                    f"Could not fetch {report.gas.failed_receipts} transaction receipts")

        if include_clusters:
            report.clustering = self.clusters(partners, transfers)
            report.cluster_risks = {
                cluster.id: assess_cluster_risk(cluster, partners)
                for cluster in report.clustering.clusters
            }

        if include_contracts:
            report.contracts = self.contract_analysis(address, from_block, to_block)

        logger.info(
            f"Analyzed {address}: {len(partners)} partners, {len(patterns)} patterns, "
            f"risk {report.risk.score} ({report.risk.level})")
        return report

    def classify_contracts(self, report: AddressReport, limit: int = 10):
        """Mark the top partners as contracts or plain accounts."""
        for partner in report.partners[:limit]:
            partner.is_contract = self.contract_detector.is_contract(partner.address)
