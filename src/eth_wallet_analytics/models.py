"""
Data models for Ethereum address analytics.

Every analysis run builds these fresh; nothing here is shared between runs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from decimal import Decimal


SENT = "sent"
RECEIVED = "received"


@dataclass(frozen=True)
class TransferRecord:
    """One directed value movement between the analyzed address and a counterparty."""
    hash: str
    block_number: int
    value: Decimal
    asset: str
    direction: str  # 'sent' or 'received'
    counterparty: str
    timestamp: Optional[datetime] = None  # None when block metadata was unavailable
    category: str = "external"


@dataclass
class TransferSet:
    """Parsed transfers of one address, split by direction."""
    address: str
    sent: List[TransferRecord] = field(default_factory=list)
    received: List[TransferRecord] = field(default_factory=list)

    @property
    def all(self) -> List[TransferRecord]:
        return self.sent + self.received

    def fingerprint(self) -> frozenset:
        return frozenset((tx.hash, tx.direction, tx.counterparty) for tx in self.all)


@dataclass
class LargeTransfer:
    tx_hash: str
    value: float
    ratio: float  # standard deviations above the mean


@dataclass
class AnomalyResult:
    """Anomaly signals for a single transfer partner."""
    large_transfers: List[LargeTransfer] = field(default_factory=list)
    unusual_frequency: bool = False
    irregular_pattern: bool = False

    @property
    def has_anomalies(self) -> bool:
        return bool(self.large_transfers) or self.unusual_frequency or self.irregular_pattern


@dataclass
class TransferPartner:
    """Aggregate of every transfer exchanged with one counterparty."""
    address: str
    total_sent: Decimal = Decimal("0")
    total_received: Decimal = Decimal("0")
    transactions: List[TransferRecord] = field(default_factory=list)
    anomalies: AnomalyResult = field(default_factory=AnomalyResult)
    annotation: str = ""
    is_contract: Optional[bool] = None

    @property
    def total_volume(self) -> Decimal:
        return self.total_sent + self.total_received


@dataclass
class GasReceipt:
    """Receipt fields returned by the data API for a single transaction."""
    gas_used: Optional[int]
    effective_gas_price: Optional[int]
    gas_limit: Optional[int] = None
    cumulative_gas_used: Optional[int] = None
    status: Optional[int] = None
    block_number: Optional[int] = None


@dataclass
class GasRecord:
    """A transfer joined with its on-chain receipt."""
    hash: str
    gas_used: int
    effective_gas_price: Optional[int]  # wei
    gas_limit: Optional[int]
    gas_fee: Decimal  # native units
    timestamp: Optional[datetime] = None
    status: Optional[int] = None
    block_number: Optional[int] = None


@dataclass
class GasTimePoint:
    timestamp: datetime
    gas_used: int
    gas_price_gwei: float
    gas_fee: Decimal


@dataclass
class GasDistribution:
    very_low: int = 0
    low: int = 0
    medium: int = 0
    high: int = 0
    very_high: int = 0


@dataclass
class WastageAnalysis:
    total_wasted_gas: int = 0
    percentage_wasted: float = 0.0
    potential_savings: Decimal = Decimal("0")  # native units


@dataclass
class GasAnalysis:
    """Aggregate gas statistics for a batch of gas records."""
    total_transactions: int = 0
    total_gas_used: int = 0
    total_gas_fee: Decimal = Decimal("0")
    average_gas_per_transaction: float = 0.0
    average_gas_price_gwei: float = 0.0
    median_gas_per_transaction: float = 0.0
    gas_efficiency: float = 0.0
    time_series: List[GasTimePoint] = field(default_factory=list)
    highest_gas_tx: Optional[GasRecord] = None
    lowest_gas_tx: Optional[GasRecord] = None
    gas_distribution: GasDistribution = field(default_factory=GasDistribution)
    wastage_analysis: WastageAnalysis = field(default_factory=WastageAnalysis)


@dataclass
class GasTip:
    title: str
    description: str
    savings_potential: str
    implementation: str = ""


@dataclass
class GasOptimization:
    tips: List[GasTip]
    has_potential_savings: bool = False
    potential_saving_percentage: float = 0.0


@dataclass
class GasReport:
    """Gas analysis together with fetch bookkeeping."""
    records: List[GasRecord]
    analysis: GasAnalysis
    failed_receipts: int = 0


@dataclass
class Pattern:
    type: str
    is_detected: bool
    confidence: int = 0
    details: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    importance: str = "low"  # 'low', 'medium' or 'high'


@dataclass
class WalletBehavior:
    type: str
    confidence: int
    behaviors: List[str] = field(default_factory=list)


@dataclass
class RiskAssessment:
    score: int
    level: str
    factors: List[str] = field(default_factory=list)
    risk_factors: List[str] = field(default_factory=list)
    protective_factors: List[str] = field(default_factory=list)


@dataclass
class ClusterMember:
    address: str
    confidence: int


@dataclass
class Cluster:
    id: str
    name: str
    type: str  # 'temporal', 'co-spending', 'behavioral' or 'heuristic'
    confidence: int
    addresses: List[ClusterMember] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    @property
    def address_set(self) -> set:
        return {member.address for member in self.addresses}


@dataclass
class ClusteringResult:
    clusters: List[Cluster] = field(default_factory=list)
    unclustered: List[str] = field(default_factory=list)


@dataclass
class ContractSummary:
    """Every interaction of the analyzed address with one contract."""
    address: str
    name: str
    interaction_count: int = 0
    first_interaction: Optional[datetime] = None
    last_interaction: Optional[datetime] = None
    total_value_sent: Decimal = Decimal("0")
    total_value_received: Decimal = Decimal("0")
    categories: Dict[str, int] = field(default_factory=dict)


@dataclass
class InteractionFrequency:
    daily: int = 0
    weekly: int = 0
    monthly: int = 0


@dataclass
class ContractTrend:
    contract: str
    name: str
    trend: str
    recent_interactions: int
    total_interactions: int


@dataclass
class ContractAnalysis:
    total_interactions: int = 0
    unique_contracts: int = 0
    contracts_summary: List[ContractSummary] = field(default_factory=list)
    categories: Dict[str, int] = field(default_factory=dict)
    most_used_contracts: List[ContractSummary] = field(default_factory=list)
    interaction_frequency: InteractionFrequency = field(default_factory=InteractionFrequency)
    recent_trends: List[ContractTrend] = field(default_factory=list)


@dataclass
class AddressReport:
    """Complete analysis of one address."""
    address: str
    partners: List[TransferPartner]
    patterns: List[Pattern]
    behavior: WalletBehavior
    risk: RiskAssessment
    gas: Optional[GasReport] = None
    gas_tips: Optional[GasOptimization] = None
    clustering: Optional[ClusteringResult] = None
    cluster_risks: Dict[str, RiskAssessment] = field(default_factory=dict)
    contracts: Optional[ContractAnalysis] = None
    warnings: List[str] = field(default_factory=list)
    skipped_records: int = 0
    analysis_date: datetime = field(default_factory=datetime.now)


@dataclass
class FlowNode:
    id: str
    name: str
    value: Decimal = Decimal("0")


@dataclass
class FlowLink:
    source: str
    target: str
    value: Decimal = Decimal("0")
    count: int = 0


@dataclass
class FlowGraph:
    """Directed value flows between the analyzed address and its partners."""
    nodes: List[FlowNode] = field(default_factory=list)
    links: List[FlowLink] = field(default_factory=list)


@dataclass
class TreeNode:
    """A node of a nested grouping; leaves carry a value, groups sum their children."""
    name: str
    value: Decimal = Decimal("0")
    children: List["TreeNode"] = field(default_factory=list)
    address: Optional[str] = None
    details: Optional[str] = None


@dataclass
class TimeGridCell:
    time_index: int
    period_index: int
    time_bucket: str
    period_bucket: str
    volume: Decimal = Decimal("0")
    count: int = 0
    anomalies: int = 0


@dataclass
class TimeGrid:
    """Activity bucketed by time span on one axis and hour or weekday on the other."""
    cells: List[TimeGridCell] = field(default_factory=list)
    time_buckets: List[str] = field(default_factory=list)
    period_buckets: List[str] = field(default_factory=list)
    max_volume: Decimal = Decimal("0")
    max_count: int = 0
    max_anomalies: int = 0

    def cell(self, time_index: int, period_index: int) -> Optional[TimeGridCell]:
        index = time_index * len(self.period_buckets) + period_index
        if 0 <= index < len(self.cells):
            return self.cells[index]
        return None
