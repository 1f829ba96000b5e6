"""
Reshapes transfers and partners into flow graphs, nested tree groupings and
time-bucketed activity grids for downstream rendering.
"""

from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from .models import (
    TransferRecord, TransferSet, TransferPartner, FlowNode, FlowLink, FlowGraph,
    TreeNode, TimeGrid, TimeGridCell, SENT)
from .patterns import WEEKDAYS
from .utils import normalize_address

logger = logging.getLogger(__name__)

MAX_TIME_BUCKETS = 50
OTHER_ADDRESSES = 'Other Addresses'

VALUE_RANGES = [
    ('Very Small (<0.01)', None, Decimal('0.01')),
    ('Small (0.01-0.1)', Decimal('0.01'), Decimal('0.1')),
    ('Medium (0.1-1.0)', Decimal('0.1'), Decimal('1.0')),
    ('Large (1.0-10.0)', Decimal('1.0'), Decimal('10.0')),
    ('Very Large (>10.0)', Decimal('10.0'), None),
]

TOKEN_CATEGORIES = {'erc20', 'erc721', 'erc1155', 'specialnft'}

_BUCKET_SPAN = {
    'hour': timedelta(hours=1),
    'day': timedelta(days=1),
    'week': timedelta(days=7),
    'month': timedelta(days=30),
}


def shorten_address(address: Optional[str]) -> str:
    """0x1234...abcd form of an address for labels."""
    if not address or not isinstance(address, str):
        return 'Unknown'
    if len(address) <= 10:
        return address
    return f'{address[:6]}...{address[-4:]}'


def _endpoints(tx: TransferRecord, central: str) -> Tuple[str, str]:
    if tx.direction == SENT:
        return central, tx.counterparty
    return tx.counterparty, central


def build_flow_graph(transfers: Optional[TransferSet], central_address: Optional[str] = None) -> FlowGraph:
    """Collapse transfers into one node per address and one link per (source, target) pair.

    A node's value is the total volume of transfers touching it.
    """
    if transfers is None:
        return FlowGraph()

    central = normalize_address(central_address or transfers.address)
    nodes: Dict[str, FlowNode] = OrderedDict()
    links: Dict[Tuple[str, str], FlowLink] = OrderedDict()
    nodes[central] = FlowNode(id=central, name=shorten_address(central))

    for tx in transfers.sent + transfers.received:
        source, target = _endpoints(tx, central)
        for address in (source, target):
            node = nodes.get(address)
            if node is None:
                node = nodes[address] = FlowNode(id=address, name=shorten_address(address))
            node.value += tx.value

        link = links.get((source, target))
        if link is None:
            link = links[(source, target)] = FlowLink(source=source, target=target)
        link.value += tx.value
        link.count += 1

    return FlowGraph(nodes=list(nodes.values()), links=list(links.values()))


def _period_key(moment: datetime, period: str) -> str:
    moment = moment.astimezone(timezone.utc)
    if period == 'week':
        # Weeks start on Sunday
        start = moment.date() - timedelta(days=(moment.weekday() + 1) % 7)
        return start.isoformat()
    if period == 'month':
        return f'{moment.year}-{moment.month:02d}'
    return moment.date().isoformat()


def group_transfers_by_period(transfers: Optional[TransferSet], period: str = 'day') -> Dict[str, TransferSet]:
    """Split a TransferSet into per-period sets keyed by day, week start or month."""
    if period not in ('day', 'week', 'month'):
        raise ValueError(f"Unsupported period '{period}', expected day, week or month")
    grouped: Dict[str, TransferSet] = {}
    if transfers is None:
        return grouped

    skipped = 0
    for tx in transfers.sent + transfers.received:
        if tx.timestamp is None:
            skipped += 1
            continue
        key = _period_key(tx.timestamp, period)
        bucket = grouped.get(key)
        if bucket is None:
            bucket = grouped[key] = TransferSet(address=transfers.address)
        (bucket.sent if tx.direction == SENT else bucket.received).append(tx)

    if skipped:
        logger.debug(f"Left {skipped} transfers without timestamps out of period grouping")
    return grouped


def build_flow_timeline(transfers: Optional[TransferSet], central_address: Optional[str] = None,
                        period: str = 'week') -> List[Tuple[str, FlowGraph]]:
    grouped = group_transfers_by_period(transfers, period)
    return [(key, build_flow_graph(grouped[key], central_address)) for key in sorted(grouped)]


def _leaf(tx: TransferRecord, sender: str, recipient: str, include_details: bool) -> TreeNode:
    details = None
    if include_details:
        details = f'From: {sender}\nTo: {recipient}\nValue: {tx.value}'
    return TreeNode(name=f'{tx.hash[:10]}...' if tx.hash else 'Tx', value=tx.value, details=details)


def _time_key(moment: datetime, date_format: str) -> str:
    moment = moment.astimezone(timezone.utc)
    if date_format == 'day':
        return moment.date().isoformat()
    if date_format == 'year':
        return str(moment.year)
    return f'{moment.year}-{moment.month:02d}'


def _category(tx: TransferRecord) -> str:
    if tx.category in TOKEN_CATEGORIES or (tx.asset and tx.asset.upper() != 'ETH'):
        return 'Token Transfers'
    if tx.category == 'internal':
        return 'Contract Interactions'
    return 'ETH Transfers'


def _group_by_address(records, central, total, value_threshold, include_details) -> List[TreeNode]:
    senders: Dict[str, TreeNode] = OrderedDict()
    for tx in records:
        sender, recipient = _endpoints(tx, central)
        node = senders.get(sender)
        if node is None:
            node = senders[sender] = TreeNode(
                name=sender, address=sender, details='Sending address' if include_details else None)
        node.value += tx.value

        child = next((c for c in node.children if c.name == recipient), None)
        if child is None:
            child = TreeNode(name=recipient, address=recipient,
                             details=f'Recipient of {sender}' if include_details else None)
            node.children.append(child)
        child.value += tx.value

    ordered = sorted(senders.values(), key=lambda n: n.value, reverse=True)
    cutoff = total * Decimal(str(value_threshold))
    significant = [n for n in ordered if n.value >= cutoff]
    small = [n for n in ordered if n.value < cutoff]
    if small:
        significant.append(TreeNode(
            name=OTHER_ADDRESSES,
            value=sum((n.value for n in small), Decimal('0')),
            children=small,
        ))
    return significant


def _group_into(records, key_for, names, central, include_details) -> List[TreeNode]:
    groups: Dict[str, TreeNode] = OrderedDict((name, TreeNode(name=name)) for name in names)
    for tx in records:
        key = key_for(tx)
        if key is None:
            continue
        group = groups.get(key)
        if group is None:
            group = groups[key] = TreeNode(name=key)
        sender, recipient = _endpoints(tx, central)
        group.value += tx.value
        group.children.append(_leaf(tx, sender, recipient, include_details))
    return [g for g in groups.values() if g.children]


def _value_range(tx: TransferRecord) -> Optional[str]:
    for name, low, high in VALUE_RANGES:
        if (low is None or tx.value >= low) and (high is None or tx.value < high):
            return name
    return None


def _prune(node: TreeNode, max_depth: int, depth: int = 1):
    if depth >= max_depth:
        node.children = []
        return
    for child in node.children:
        _prune(child, max_depth, depth + 1)


def build_tree_map(transfers: Optional[TransferSet], group_by: str = 'address', min_value=0,
                   value_threshold: float = 0.01, max_depth: int = 3, date_format: str = 'month',
                   include_details: bool = True, root_name: str = 'Transactions') -> TreeNode:
    """Nest transfers under a root by sender, time period, value range or category.

    Address grouping folds senders below value_threshold of the total volume
    into an "Other Addresses" group. Nodes at max_depth become leaves.
    """
    if transfers is None or not transfers.all:
        return TreeNode(name='No Data')

    central = transfers.address
    records = transfers.sent + transfers.received
    total = sum((tx.value for tx in records), Decimal('0'))
    floor = Decimal(str(min_value))
    kept = [tx for tx in records if tx.value >= floor]

    root = TreeNode(name=root_name)
    if group_by == 'address':
        root.children = _group_by_address(kept, central, total, value_threshold, include_details)
    elif group_by == 'time':
        root.children = sorted(
            _group_into(kept, lambda tx: _time_key(tx.timestamp, date_format) if tx.timestamp else None,
                        [], central, include_details),
            key=lambda n: n.name)
    elif group_by == 'value':
        root.children = _group_into(kept, _value_range, [name for name, _, _ in VALUE_RANGES],
                                    central, include_details)
    elif group_by == 'category':
        root.children = _group_into(
            kept, _category, ['Token Transfers', 'Contract Interactions', 'ETH Transfers'],
            central, include_details)
    else:
        raise ValueError(f"Unsupported grouping '{group_by}', expected address, time, value or category")

    root.value = sum((child.value for child in root.children), Decimal('0'))
    _prune(root, max_depth)
    return root


def _months_between(start: datetime, moment: datetime) -> int:
    return (moment.year - start.year) * 12 + moment.month - start.month


def _add_months(moment: datetime, months: int) -> datetime:
    """Midnight on the first day of the month `months` after the month of moment."""
    month = moment.month - 1 + months
    return moment.replace(year=moment.year + month // 12, month=month % 12 + 1, day=1,
                          hour=0, minute=0, second=0, microsecond=0)


def _bucket_label(moment: datetime, resolution: str) -> str:
    if resolution == 'hour':
        return moment.strftime('%b %d, %H:00')
    if resolution == 'week':
        return moment.strftime('Week of %b %d')
    if resolution == 'month':
        return moment.strftime('%b %Y')
    return moment.strftime('%b %d')


def _time_buckets(start: datetime, end: datetime, resolution: str) -> List[str]:
    buckets = []
    current = start
    if resolution == 'month':
        current = _add_months(start, 0)
    while current <= end and len(buckets) < MAX_TIME_BUCKETS:
        buckets.append(_bucket_label(current, resolution))
        if resolution == 'month':
            current = _add_months(current, 1)
        else:
            current = current + _BUCKET_SPAN[resolution]
    return buckets


def build_time_grid(partners: Sequence[TransferPartner], resolution: str = 'day') -> TimeGrid:
    """Bucket partner activity by time span and by hour of day (hour resolution) or weekday.

    Activity past the last of the MAX_TIME_BUCKETS buckets lands in the last one.
    """
    if resolution not in _BUCKET_SPAN:
        raise ValueError(f"Unsupported resolution '{resolution}', expected hour, day, week or month")

    timed = []
    for partner in partners:
        flagged = partner.anomalies.has_anomalies
        for tx in partner.transactions:
            if tx.timestamp is not None:
                timed.append((tx.timestamp.astimezone(timezone.utc), tx, flagged))
    if not timed:
        return TimeGrid()

    timed.sort(key=lambda item: item[0])
    start, end = timed[0][0], timed[-1][0]
    time_buckets = _time_buckets(start, end, resolution)
    if resolution == 'hour':
        period_buckets = [f'{hour:02d}' for hour in range(24)]
    else:
        period_buckets = [day[:3] for day in WEEKDAYS]

    grid = TimeGrid(time_buckets=time_buckets, period_buckets=period_buckets)
    for time_index, time_bucket in enumerate(time_buckets):
        for period_index, period_bucket in enumerate(period_buckets):
            grid.cells.append(TimeGridCell(
                time_index=time_index, period_index=period_index,
                time_bucket=time_bucket, period_bucket=period_bucket))

    span = _BUCKET_SPAN[resolution]
    for moment, tx, flagged in timed:
        if resolution == 'month':
            elapsed = _months_between(start, moment)
        else:
            elapsed = int((moment - start) / span)
        time_index = min(elapsed, len(time_buckets) - 1)
        period_index = moment.hour if resolution == 'hour' else (moment.weekday() + 1) % 7
        cell = grid.cell(time_index, period_index)
        cell.volume += tx.value
        cell.count += 1
        if flagged:
            cell.anomalies += 1

    grid.max_volume = max(c.volume for c in grid.cells)
    grid.max_count = max(c.count for c in grid.cells)
    grid.max_anomalies = max(c.anomalies for c in grid.cells)
    return grid
