"""
Pytest fixtures for eth_wallet_analytics tests: transfer record and raw
transfer factories anchored on a fixed UTC Sunday.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from eth_wallet_analytics.models import TransferRecord, RECEIVED

# 2024-01-07 is a Sunday
BASE_TIME = datetime(2024, 1, 7, tzinfo=timezone.utc)
CENTRAL = "0x" + "c" * 40


def address(n: int) -> str:
    return "0x" + f"{n:040x}"


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def central():
    return CENTRAL


@pytest.fixture
def addr():
    """Deterministic lowercase address for a small integer."""
    return address


@pytest.fixture
def make_tx():
    """Build TransferRecords; hours offsets BASE_TIME, None leaves the timestamp out."""
    counter = itertools.count(1)

    def _make(value, direction=RECEIVED, counterparty=None, hours=None, block=None,
              tx_hash=None, asset="ETH", category="external"):
        n = next(counter)
        return TransferRecord(
            hash=tx_hash or f"0x{n:064x}",
            block_number=block if block is not None else n,
            value=Decimal(str(value)),
            asset=asset,
            direction=direction,
            counterparty=counterparty or address(1),
            timestamp=BASE_TIME + timedelta(hours=hours) if hours is not None else None,
            category=category,
        )

    return _make


@pytest.fixture
def raw_transfer():
    """Build alchemy_getAssetTransfers entries."""
    counter = itertools.count(1)

    def _make(frm, to, value, hours=None, block=None, tx_hash=None):
        n = next(counter)
        raw = {
            "hash": tx_hash or f"0x{n:064x}",
            "from": frm,
            "to": to,
            "value": value,
            "asset": "ETH",
            "category": "external",
            "blockNum": hex(block if block is not None else n),
        }
        if hours is not None:
            moment = BASE_TIME + timedelta(hours=hours)
            raw["metadata"] = {"blockTimestamp": moment.strftime("%Y-%m-%dT%H:%M:%S.000Z")}
        return raw

    return _make
