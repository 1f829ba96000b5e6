import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class ClusteringConfig:
    """Tunable thresholds for identity clustering heuristics."""

    temporal_similarity_threshold: float = 0.8
    behavioral_similarity_threshold: float = 0.85
    round_number_similarity_threshold: float = 0.9
    subset_overlap: float = 0.7
    co_spending_window_seconds: float = 300.0
    min_edge_weight: int = 2
    migration_forward_ratio: float = 0.9
    migration_window_seconds: float = 86400.0
    min_temporal_transactions: int = 3
    min_behavioral_transactions: int = 3
    min_round_number_transactions: int = 5

    @classmethod
    def from_env(cls) -> "ClusteringConfig":
        """Override defaults from CLUSTER_<FIELD> environment variables."""
        overrides = {}
        for f in fields(cls):
            raw = os.getenv(f"CLUSTER_{f.name.upper()}")
            if raw is None:
                continue
            cast = int if isinstance(f.default, int) else float
            overrides[f.name] = cast(raw)
        return cls(**overrides)


@dataclass
class Config:
    """Application configuration."""

    # API Keys
    alchemy_api_key: str
    alchemy_network: str = "eth-mainnet"
    rpc_url: Optional[str] = None

    # Fetch settings
    max_transfers: int = 1000
    max_gas_transactions: int = 50
    receipt_workers: int = 8
    rate_limit_delay: float = 0.0  # seconds between API calls

    # Output settings
    output_format: str = "table"  # table, json
    store_path: Path = field(
        default_factory=lambda: Path.home() / ".eth_wallet_analytics" / "store.json")

    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)

    @property
    def alchemy_url(self) -> str:
        return f"https://{self.alchemy_network}.g.alchemy.com/v2/{self.alchemy_api_key}"

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        alchemy_key = os.getenv("ALCHEMY_API_KEY")
        if not alchemy_key:
            raise ValueError(
                "ALCHEMY_API_KEY environment variable is required")

        store_path = os.getenv("STORE_PATH")

        return cls(
            alchemy_api_key=alchemy_key,
            alchemy_network=os.getenv("ALCHEMY_NETWORK", "eth-mainnet"),
            rpc_url=os.getenv("RPC_URL"),
            max_transfers=int(os.getenv("MAX_TRANSFERS", "1000")),
            max_gas_transactions=int(os.getenv("MAX_GAS_TRANSACTIONS", "50")),
            receipt_workers=int(os.getenv("RECEIPT_WORKERS", "8")),
            rate_limit_delay=float(os.getenv("RATE_LIMIT_DELAY", "0.0")),
            output_format=os.getenv("OUTPUT_FORMAT", "table"),
            store_path=Path(store_path).expanduser() if store_path else
            Path.home() / ".eth_wallet_analytics" / "store.json",
            clustering=ClusteringConfig.from_env(),
        )
