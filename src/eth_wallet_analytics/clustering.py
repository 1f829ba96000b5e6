"""
Identity clustering: groups transfer partners that probably share a
controller, using temporal, co-spending, behavioral and value heuristics.

Results are hints with a heuristic confidence, never ground truth. All
thresholds come from ClusteringConfig.
"""

from collections import defaultdict, deque
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence
import logging

from .config import ClusteringConfig
from .models import (
    TransferPartner, TransferSet, Cluster, ClusterMember, ClusteringResult, RiskAssessment,
    SENT, RECEIVED)
from .patterns import risk_level
from .utils import is_round_number, round_number_kind
from . import stats
from .stats import round_half_up

logger = logging.getLogger(__name__)

AddressGraph = Dict[str, Dict[str, int]]


def build_address_graph(partners: Sequence[TransferPartner], transfers: Optional[TransferSet],
                        config: ClusteringConfig) -> AddressGraph:
    """Link partners whose inbound and outbound transfers share a block or a short time window.

    Edge weights count how often the pair co-occurred.
    """
    graph: AddressGraph = {p.address: defaultdict(int) for p in partners}
    if transfers is None:
        return graph

    for sent_tx in transfers.sent:
        if sent_tx.counterparty not in graph:
            continue

        senders = set()
        for received_tx in transfers.received:
            same_block = sent_tx.block_number and received_tx.block_number == sent_tx.block_number
            close_in_time = (
                sent_tx.timestamp is not None and received_tx.timestamp is not None and
                abs((received_tx.timestamp - sent_tx.timestamp).total_seconds()) <
                config.co_spending_window_seconds
            )
            if same_block or close_in_time:
                senders.add(received_tx.counterparty)

        for sender in senders:
            if sender in graph and sender != sent_tx.counterparty:
                graph[sender][sent_tx.counterparty] += 1
                graph[sent_tx.counterparty][sender] += 1

    return graph


def _similarity_clusters(profiles: Dict[str, dict], similarity: Callable[[dict, dict], float],
                         threshold: float, overlap: float, id_prefix: str, name_prefix: str,
                         cluster_type: str, reasons: List[str]) -> List[Cluster]:
    """Seed one group per profile with every other profile above the threshold.

    A group that mostly repeats an earlier group is dropped.
    """
    clusters: List[Cluster] = []
    if len(profiles) < 2:
        return clusters

    for address, profile in profiles.items():
        members = [ClusterMember(address=address, confidence=100)]
        for other_address, other in profiles.items():
            if other_address == address:
                continue
            score = similarity(profile, other)
            if score > threshold:
                members.append(ClusterMember(address=other_address, confidence=round_half_up(score * 100)))

        if len(members) < 2:
            continue

        member_set = {m.address for m in members}
        if any(len(c.address_set & member_set) >= len(members) * overlap for c in clusters):
            continue

        number = len(clusters) + 1
        clusters.append(Cluster(
            id=f'{id_prefix}-{number}',
            name=f'{name_prefix} {number}',
            type=cluster_type,
            confidence=round_half_up(sum(m.confidence for m in members) / len(members)),
            addresses=members,
            reasons=list(reasons),
        ))

    return clusters


def identify_temporal_clusters(partners: Sequence[TransferPartner],
                               config: ClusteringConfig) -> List[Cluster]:
    profiles = {}
    for partner in partners:
        moments = sorted(tx.timestamp for tx in partner.transactions if tx.timestamp)
        if len(moments) < config.min_temporal_transactions:
            continue
        profiles[partner.address] = {
            'mean_interval': stats.mean(stats.intervals([m.timestamp() for m in moments])),
            'hours': {m.hour for m in moments},
            'days': {m.weekday() for m in moments},
        }

    def similarity(a: dict, b: dict) -> float:
        return (stats.jaccard(a['hours'], b['hours']) * 0.4 +
                stats.jaccard(a['days'], b['days']) * 0.3 +
                (1 - stats.relative_difference(a['mean_interval'], b['mean_interval'])) * 0.3)

    return _similarity_clusters(
        profiles, similarity, config.temporal_similarity_threshold, config.subset_overlap,
        'temporal', 'Temporal Group', 'temporal',
        ['Similar transaction timing patterns', 'Activity during the same hours/days'])


def identify_co_spending_clusters(graph: AddressGraph, config: ClusteringConfig) -> List[Cluster]:
    """Connected components over strong co-spending edges."""
    clusters: List[Cluster] = []
    visited = set()

    for start in graph:
        if start in visited:
            continue
        component = []
        queue = deque([start])
        visited.add(start)
        while queue:
            current = queue.popleft()
            component.append(current)
            for target, weight in graph[current].items():
                if target not in visited and weight >= config.min_edge_weight:
                    visited.add(target)
                    queue.append(target)

        if len(component) < 2:
            continue

        members = set(component)
        scores = []
        for address in component:
            weights = [w for target, w in graph[address].items() if target in members]
            scores.append(min(95, round_half_up(stats.mean(weights) * 15)))

        number = len(clusters) + 1
        clusters.append(Cluster(
            id=f'co-spending-{number}',
            name=f'Co-spending Group {number}',
            type='co-spending',
            confidence=round_half_up(stats.mean(scores)),
            addresses=[ClusterMember(address=a, confidence=s) for a, s in zip(component, scores)],
            reasons=['Frequent co-spending patterns', 'Transactions in the same blocks'],
        ))

    return clusters


def _anomaly_types(partner: TransferPartner) -> set:
    kinds = set()
    if partner.anomalies.large_transfers:
        kinds.add('large_transfers')
    if partner.anomalies.unusual_frequency:
        kinds.add('unusual_frequency')
    if partner.anomalies.irregular_pattern:
        kinds.add('irregular_pattern')
    return kinds


def identify_behavioral_clusters(partners: Sequence[TransferPartner],
                                 config: ClusteringConfig) -> List[Cluster]:
    profiles = {}
    for partner in partners:
        if len(partner.transactions) < config.min_behavioral_transactions:
            continue
        sent_count = sum(1 for tx in partner.transactions if tx.direction == SENT)
        received_count = sum(1 for tx in partner.transactions if tx.direction == RECEIVED)
        values = [tx.value for tx in partner.transactions]
        profiles[partner.address] = {
            'sent_average': float(partner.total_sent) / sent_count if sent_count else 0.0,
            'received_average': float(partner.total_received) / received_count if received_count else 0.0,
            'average_value': stats.mean([float(v) for v in values]),
            'round_ratio': sum(1 for v in values if is_round_number(v)) / len(values),
            'anomalies': _anomaly_types(partner),
        }

    def similarity(a: dict, b: dict) -> float:
        frequency = 1 - min(1.0,
                            stats.relative_difference(a['sent_average'], b['sent_average']) * 0.5 +
                            stats.relative_difference(a['received_average'], b['received_average']) * 0.5)
        value = 1 - stats.relative_difference(a['average_value'], b['average_value'])
        rounding = 1 - abs(a['round_ratio'] - b['round_ratio'])
        if not a['anomalies'] and not b['anomalies']:
            anomaly = 1.0
        else:
            anomaly = stats.jaccard(a['anomalies'], b['anomalies'])
        return frequency * 0.35 + value * 0.25 + rounding * 0.2 + anomaly * 0.2

    return _similarity_clusters(
        profiles, similarity, config.behavioral_similarity_threshold, config.subset_overlap,
        'behavioral', 'Behavioral Group', 'behavioral',
        ['Similar transaction value patterns', 'Similar anomaly profiles'])


def detect_fund_migrations(partners: Sequence[TransferPartner], transfers: Optional[TransferSet],
                           config: ClusteringConfig) -> List[Cluster]:
    """Partners whose deposits were promptly forwarded, nearly whole, to another partner."""
    clusters: List[Cluster] = []
    if transfers is None:
        return clusters

    outgoing = [tx for tx in transfers.sent if tx.timestamp is not None]
    for partner in partners:
        destinations = []
        for deposit in partner.transactions:
            if deposit.direction != RECEIVED or deposit.timestamp is None or deposit.value <= 0:
                continue
            floor = deposit.value * Decimal(str(config.migration_forward_ratio))
            for forward in outgoing:
                if forward.counterparty == partner.address or forward.counterparty in destinations:
                    continue
                delay = (forward.timestamp - deposit.timestamp).total_seconds()
                if 0 <= delay <= config.migration_window_seconds and floor <= forward.value <= deposit.value:
                    destinations.append(forward.counterparty)

        if not destinations:
            continue

        number = len(clusters) + 1
        clusters.append(Cluster(
            id=f'migration-{number}',
            name=f'Sequential Transfer Group {number}',
            type='heuristic',
            confidence=90,
            addresses=[ClusterMember(address=a, confidence=90) for a in [partner.address] + destinations],
            reasons=['Sequential transfers suggesting address change', 'Fund migration pattern'],
        ))

    return clusters


def identify_round_number_clusters(partners: Sequence[TransferPartner],
                                   config: ClusteringConfig) -> List[Cluster]:
    profiles = {}
    for partner in partners:
        if len(partner.transactions) < config.min_round_number_transactions:
            continue
        kinds = [round_number_kind(tx.value) for tx in partner.transactions]
        profiles[partner.address] = {
            kind: kinds.count(kind) / len(kinds) for kind in ('whole', 'half', 'tenth', 'other')
        }

    def similarity(a: dict, b: dict) -> float:
        return 1 - sum(abs(a[kind] - b[kind]) for kind in a) / 4

    return _similarity_clusters(
        profiles, similarity, config.round_number_similarity_threshold, config.subset_overlap,
        'round-number', 'Round Number Group', 'heuristic',
        ['Similar round number preferences', 'Consistent value pattern across addresses'])


def merge_clusters(candidates: Sequence[Cluster]) -> List[Cluster]:
    """Keep the most confident clusters, dropping those mostly claimed already."""
    assigned = set()
    merged: List[Cluster] = []

    for cluster in sorted(candidates, key=lambda c: c.confidence, reverse=True):
        addresses = [m.address for m in cluster.addresses]
        already = sum(1 for a in addresses if a in assigned)
        if already > len(addresses) / 2:
            continue

        number = len(merged) + 1
        merged.append(Cluster(
            id=f'merged-{number}',
            name=f'Identity Cluster {number}',
            type=cluster.type,
            confidence=cluster.confidence,
            addresses=list(cluster.addresses),
            reasons=list(cluster.reasons),
        ))
        assigned.update(addresses)

    return merged


def identify_related_addresses(partners: Sequence[TransferPartner],
                               transfers: Optional[TransferSet] = None,
                               config: Optional[ClusteringConfig] = None) -> ClusteringResult:
    """Group partner addresses that likely belong to the same entity."""
    if not partners:
        return ClusteringResult()

    config = config or ClusteringConfig()
    graph = build_address_graph(partners, transfers, config)

    candidates = (
        identify_temporal_clusters(partners, config) +
        identify_co_spending_clusters(graph, config) +
        identify_behavioral_clusters(partners, config) +
        detect_fund_migrations(partners, transfers, config) +
        identify_round_number_clusters(partners, config)
    )
    clusters = merge_clusters(candidates)

    clustered = set()
    for cluster in clusters:
        clustered |= cluster.address_set
    unclustered = [p.address for p in partners if p.address not in clustered]

    logger.info(f"Found {len(clusters)} identity clusters from {len(candidates)} candidates")
    return ClusteringResult(clusters=clusters, unclustered=unclustered)


def _is_regular(partner: TransferPartner) -> bool:
    moments = sorted(tx.timestamp.timestamp() for tx in partner.transactions if tx.timestamp)
    if len(moments) < 5:
        return False
    gaps = stats.intervals(moments)
    return stats.mean(gaps) > 0 and stats.coefficient_of_variation(gaps) < 0.5


def assess_cluster_risk(cluster: Optional[Cluster], partners: Sequence[TransferPartner]) -> RiskAssessment:
    """Score a cluster from the anomalies and activity of its members."""
    if cluster is None or not cluster.addresses:
        return RiskAssessment(score=0, level='Unknown')

    members = cluster.address_set
    cluster_partners = [p for p in partners if p.address in members]
    score = 50
    risk_factors = []
    protective_factors = []

    large = sum(len(p.anomalies.large_transfers) for p in cluster_partners)
    unusual = sum(1 for p in cluster_partners if p.anomalies.unusual_frequency)
    irregular = sum(1 for p in cluster_partners if p.anomalies.irregular_pattern)

    if large:
        score += 15
        risk_factors.append(f'{large} unusually large transactions detected across the cluster')
    if unusual:
        score += 10
        risk_factors.append(f'{unusual} addresses show unusual transaction timing')
    if irregular:
        score += 10
        risk_factors.append(f'{irregular} addresses show irregular transaction patterns')

    funded = sum(1 for p in cluster_partners if p.total_sent > 0)
    if funded > 20:
        score += 15
        risk_factors.append(f'High distribution to {funded} different addresses in the cluster')

    total_volume = sum((p.total_volume for p in cluster_partners), Decimal('0'))
    if total_volume > 100:
        score += 10
        risk_factors.append(f'High total transfer volume ({total_volume:.2f} ETH)')

    if any(_is_regular(p) for p in cluster_partners):
        score -= 20
        protective_factors.append('Regular periodic transactions suggest legitimate scheduled activity')

    score = max(0, min(100, score))
    return RiskAssessment(
        score=score,
        level=risk_level(score),
        factors=risk_factors + protective_factors,
        risk_factors=risk_factors,
        protective_factors=protective_factors,
    )
