import time
import logging
from itertools import count
from typing import Optional, List, Dict, Any

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound

from .config import Config
from .errors import ApiError
from .models import GasReceipt
from .utils import hex_to_int, normalize_address

# Set up logging
logger = logging.getLogger(__name__)

PUBLIC_RPC_URL = "https://eth.llamarpc.com"
MAX_PAGE_SIZE = 1000


class AlchemyClient:
    """Client for the Alchemy JSON-RPC API."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.url = config.alchemy_url
        self.session = session or requests.Session()
        self._ids = count(1)

    def _make_request(self, method: str, params: List[Any]) -> Any:
        """Make a JSON-RPC call and return its result."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=30)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ApiError(f"{method} request failed: {e}") from e

        if data.get("error"):
            error = data["error"]
            message = error.get("message", "Unknown error") if isinstance(error, dict) else error
            raise ApiError(f"Alchemy API error in {method}: {message}")

        # Rate limiting
        if self.config.rate_limit_delay:
            time.sleep(self.config.rate_limit_delay)

        return data.get("result")

    def _get_asset_transfers(self, direction_field: str, address: str,
                             from_block: Optional[int], to_block: Optional[int],
                             categories: List[str], exclude_zero_value: bool) -> List[Dict[str, Any]]:
        """Page through alchemy_getAssetTransfers for one direction."""
        transfers: List[Dict[str, Any]] = []
        page_key = None

        while len(transfers) < self.config.max_transfers:
            params: Dict[str, Any] = {
                direction_field: address,
                "category": categories,
                "excludeZeroValue": exclude_zero_value,
                "withMetadata": True,
                "maxCount": hex(min(MAX_PAGE_SIZE, self.config.max_transfers - len(transfers))),
            }
            if from_block is not None:
                params["fromBlock"] = hex(from_block)
            if to_block is not None:
                params["toBlock"] = hex(to_block)
            if page_key:
                params["pageKey"] = page_key

            result = self._make_request("alchemy_getAssetTransfers", [params]) or {}
            transfers.extend(result.get("transfers") or [])

            page_key = result.get("pageKey")
            if not page_key:
                break

        return transfers[:self.config.max_transfers]

    def fetch_transfers(self, address: str, from_block: Optional[int] = None,
                        to_block: Optional[int] = None, categories: Optional[List[str]] = None,
                        exclude_zero_value: bool = True) -> Dict[str, List[Dict[str, Any]]]:
        """Get outgoing and incoming transfers of an address.

        Only external value transfers by default; pass categories and
        exclude_zero_value=False to include token, NFT and zero-value calls.
        """
        address = normalize_address(address)
        categories = list(categories or ["external"])
        sent = self._get_asset_transfers(
            "fromAddress", address, from_block, to_block, categories, exclude_zero_value)
        received = self._get_asset_transfers(
            "toAddress", address, from_block, to_block, categories, exclude_zero_value)
        logger.info(f"Fetched {len(sent)} sent and {len(received)} received transfers for {address}")
        return {"sent": sent, "received": received}

    def fetch_transaction_receipt(self, tx_hash: str) -> Optional[GasReceipt]:
        """Get the gas fields of a transaction receipt, or None if it is unknown."""
        receipt = self._make_request("eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            return None

        transaction = self._make_request("eth_getTransactionByHash", [tx_hash]) or {}

        return GasReceipt(
            gas_used=hex_to_int(receipt.get("gasUsed")),
            effective_gas_price=hex_to_int(receipt.get("effectiveGasPrice") or transaction.get("gasPrice")),
            gas_limit=hex_to_int(transaction.get("gas")),
            cumulative_gas_used=hex_to_int(receipt.get("cumulativeGasUsed")),
            status=hex_to_int(receipt.get("status")),
            block_number=hex_to_int(receipt.get("blockNumber")),
        )

    def fetch_code(self, address: str) -> str:
        """Get the deployed bytecode of an address ('0x' for plain accounts)."""
        return self._make_request("eth_getCode", [normalize_address(address), "latest"]) or "0x"

    def is_contract_address(self, address: str) -> bool:
        """Check if an address is a smart contract."""
        try:
            code = self.fetch_code(address)
            return code not in ("0x", "0x0", "")
        except ApiError as e:
            logger.warning(f"Contract check failed for {address}: {e}")
            return False


class Web3Client:
    """Client for Web3 operations."""

    def __init__(self, config: Optional[Config] = None, provider_url: Optional[str] = None):
        if provider_url is None:
            # Use Alchemy if API key is available, otherwise use public RPC
            if config and config.rpc_url:
                provider_url = config.rpc_url
            elif config and config.alchemy_api_key and not str(config.alchemy_api_key).lower().startswith("your_"):
                provider_url = config.alchemy_url
            else:
                provider_url = PUBLIC_RPC_URL

        self.w3 = Web3(Web3.HTTPProvider(provider_url))

    def fetch_transaction_receipt(self, tx_hash: str) -> Optional[GasReceipt]:
        """Get the gas fields of a transaction receipt, or None if it is unknown."""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            transaction = self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise ApiError(f"Receipt lookup failed for {tx_hash}: {e}") from e

        return GasReceipt(
            gas_used=receipt.get("gasUsed"),
            effective_gas_price=receipt.get("effectiveGasPrice") or transaction.get("gasPrice"),
            gas_limit=transaction.get("gas"),
            cumulative_gas_used=receipt.get("cumulativeGasUsed"),
            status=receipt.get("status"),
            block_number=receipt.get("blockNumber"),
        )

    def fetch_code(self, address: str) -> str:
        try:
            code = self.w3.eth.get_code(Web3.to_checksum_address(address))
        except Exception as e:
            raise ApiError(f"Code lookup failed for {address}: {e}") from e
        return "0x" + bytes(code).hex()

    def is_contract_address(self, address: str) -> bool:
        """Check if an address is a smart contract."""
        try:
            address = Web3.to_checksum_address(address)
            code = self.w3.eth.get_code(address)
            return len(code) > 0
        except Exception as e:
            logger.warning(f"Contract check failed for {address}: {e}")
            return False
