"""
Behavioral pattern detection over an address's full transfer history,
plus wallet categorization and risk scoring derived from the detected
patterns.

Each detector is independent and only looks at the transfers passed in;
detectors whose minimum sample size is not met report is_detected=False.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Union

from .models import (
    TransferRecord, TransferSet, Pattern, WalletBehavior, RiskAssessment, SENT, RECEIVED)
from .utils import is_round_number, normalize_address
from . import stats
from .stats import round_half_up

PERIODIC = 'periodic_transfers'
ROUND_NUMBERS = 'round_number_transfers'
DISTRIBUTOR = 'distributor_pattern'
COLLECTOR = 'collector_pattern'
WHALE = 'whale_transfers'
ACCUMULATION = 'accumulation_pattern'
DISTRIBUTION = 'distribution_pattern'
BURST = 'burst_activity'
CYCLICAL = 'cyclical_behavior'

WEEKDAYS = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']
HIGH_FAN_OUT = 20

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _chronological(transactions: Sequence[TransferRecord]) -> List[TransferRecord]:
    # Untimestamped transfers sort first, keeping their scan order
    return sorted(transactions, key=lambda tx: tx.timestamp or _EPOCH)


def _timed(transactions: Sequence[TransferRecord]) -> List[TransferRecord]:
    """Timestamped transfers in chronological order."""
    return sorted((tx for tx in transactions if tx.timestamp is not None), key=lambda tx: tx.timestamp)


def _weekday(moment: datetime) -> int:
    """Day of week in UTC with Sunday as 0."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return (moment.weekday() + 1) % 7


def detect_periodic_transfers(transactions: Sequence[TransferRecord]) -> Pattern:
    timed = _timed(transactions)
    if len(timed) < 5:
        return Pattern(type=PERIODIC, is_detected=False)

    hours = [tx.timestamp.timestamp() / 3600 for tx in timed]
    gaps = stats.intervals(hours)
    mean = stats.mean(gaps)
    cv = stats.coefficient_of_variation(gaps)
    is_regular = mean > 0 and cv < 0.5

    period = ''
    if is_regular:
        if 22 <= mean <= 26:
            period = 'daily'
        elif 150 <= mean <= 190:
            period = 'weekly'
        elif 650 <= mean <= 750:
            period = 'monthly'
        else:
            period = f'every {round_half_up(mean)} hours'

    return Pattern(
        type=PERIODIC,
        is_detected=is_regular,
        confidence=max(0, min(100, round_half_up(100 * (1 - cv)))) if is_regular else 0,
        details={
            'period': period,
            'average_interval': round_half_up(mean),
            'interval_unit': 'hours',
            'regularity_score': round_half_up(100 * (1 - cv)),
            'transactions_analyzed': len(timed),
        },
        description=f'Regular transfers occurring approximately {period}' if is_regular
        else 'No periodic transfer pattern detected',
        importance='medium',
    )


def detect_round_number_transfers(transactions: Sequence[TransferRecord]) -> Pattern:
    values = [tx.value for tx in transactions if tx.value]
    if len(values) < 3:
        return Pattern(type=ROUND_NUMBERS, is_detected=False)

    round_values = [v for v in values if is_round_number(v)]
    percentage = len(round_values) / len(values) * 100
    is_round = percentage > 60 and len(round_values) >= 3
    examples = [str(v) for v in round_values[:3]]

    return Pattern(
        type=ROUND_NUMBERS,
        is_detected=is_round,
        confidence=round_half_up(percentage),
        details={
            'round_number_count': len(round_values),
            'total_transactions': len(values),
            'percentage': round_half_up(percentage),
            'examples': examples,
        },
        description=f"{round_half_up(percentage)}% of transactions use round numbers ({', '.join(examples[:2])})"
        if is_round else 'No round number pattern detected',
        importance='low',
    )


def detect_distribution_patterns(transactions: Sequence[TransferRecord],
                                 central_address: Optional[str] = None) -> List[Pattern]:
    """Detect one-to-many (distributor) and many-to-one (collector) shapes."""
    central = normalize_address(central_address) if central_address else None
    patterns = []

    sent = [tx for tx in transactions if tx.direction == SENT and tx.counterparty != central]
    recipients = {tx.counterparty for tx in sent if tx.counterparty}
    if len(sent) >= 5 and len(recipients) >= 5:
        ratio = len(recipients) / len(sent)
        patterns.append(Pattern(
            type=DISTRIBUTOR,
            is_detected=True,
            confidence=min(90, round_half_up(ratio * 100)),
            details={
                'unique_recipients': len(recipients),
                'total_sent_transactions': len(sent),
                'unique_ratio': round(ratio, 2),
            },
            description=f'Distributed funds to {len(recipients)} different addresses',
            importance='high' if len(recipients) > HIGH_FAN_OUT else 'medium',
        ))

    received = [tx for tx in transactions if tx.direction == RECEIVED and tx.counterparty != central]
    senders = {tx.counterparty for tx in received if tx.counterparty}
    if len(received) >= 5 and len(senders) >= 5:
        ratio = len(senders) / len(received)
        patterns.append(Pattern(
            type=COLLECTOR,
            is_detected=True,
            confidence=min(90, round_half_up(ratio * 100)),
            details={
                'unique_senders': len(senders),
                'total_received_transactions': len(received),
                'unique_ratio': round(ratio, 2),
            },
            description=f'Received funds from {len(senders)} different addresses',
            importance='high' if len(senders) > HIGH_FAN_OUT else 'medium',
        ))

    return patterns


def detect_whale_transfers(transactions: Sequence[TransferRecord]) -> Pattern:
    valued = [tx for tx in transactions if tx.value]
    if len(valued) < 5:
        return Pattern(type=WHALE, is_detected=False)

    values = [float(tx.value) for tx in valued]
    mean = stats.mean(values)
    threshold = mean + 3 * stats.std_dev(values)
    whales = [v for v in values if v > threshold]

    return Pattern(
        type=WHALE,
        is_detected=bool(whales),
        confidence=85 if whales else 0,
        details={
            'whale_transaction_count': len(whales),
            'total_transactions': len(values),
            'typical_transaction_value': round(mean, 4),
            'whale_threshold': round(threshold, 4),
            'largest_transaction': round(max(whales), 4) if whales else 0,
        },
        description=f'Found {len(whales)} abnormally large transactions (>{threshold:.2f} ETH)'
        if whales else 'No abnormally large transactions detected',
        importance='high',
    )


def detect_accumulation_pattern(transactions: Sequence[TransferRecord],
                                central_address: Optional[str] = None) -> Pattern:
    """Fit a line through the running balance to spot steady accumulation or drain."""
    timed = [tx for tx in _timed(transactions) if tx.value]
    if len(timed) < 10:
        return Pattern(type=ACCUMULATION, is_detected=False)

    balance = 0.0
    balances = []
    for tx in timed:
        value = float(tx.value)
        balance += value if tx.direction == RECEIVED else -value
        balances.append(balance)

    fit = stats.linear_regression(list(range(len(balances))), balances)
    is_trending = abs(fit.r_squared) > 0.5
    kind = 'accumulation' if fit.slope > 0 else 'distribution'
    duration_days = (timed[-1].timestamp - timed[0].timestamp).total_seconds() / 86400

    return Pattern(
        type=f'{kind}_pattern',
        is_detected=is_trending,
        confidence=round_half_up(fit.r_squared * 100),
        details={
            'pattern': kind,
            'start_balance': round(balances[0], 4),
            'end_balance': round(balances[-1], 4),
            'net_change': round(balances[-1] - balances[0], 4),
            'trend_strength': round(fit.r_squared, 2),
            'slope': fit.slope,
            'duration': f'{round_half_up(duration_days)} days',
        },
        description=f'Gradual {kind} of funds over time ({round_half_up(fit.r_squared * 100)}% confidence)'
        if is_trending else 'No clear accumulation or distribution pattern',
        importance='medium',
    )


def detect_burst_activity(transactions: Sequence[TransferRecord]) -> Pattern:
    """Find runs of 3+ transfers packed much tighter than the average spacing."""
    timed = _timed(transactions)
    if len(timed) < 5:
        return Pattern(type=BURST, is_detected=False)

    total_duration = (timed[-1].timestamp - timed[0].timestamp).total_seconds()
    expected_gap = total_duration / (len(timed) - 1)

    bursts = []
    current = [timed[0]]
    for prev, tx in zip(timed, timed[1:]):
        gap = (tx.timestamp - prev.timestamp).total_seconds()
        if gap < expected_gap * 0.3:
            current.append(tx)
            continue
        if len(current) >= 3:
            bursts.append(current)
        current = [tx]
    if len(current) >= 3:
        bursts.append(current)

    return Pattern(
        type=BURST,
        is_detected=bool(bursts),
        confidence=75 if bursts else 0,
        details={
            'burst_periods': len(bursts),
            'largest_burst': max((len(b) for b in bursts), default=0),
            'burst_details': [
                {
                    'date': b[0].timestamp.date().isoformat(),
                    'transactions': len(b),
                    'duration': f"{round_half_up((b[-1].timestamp - b[0].timestamp).total_seconds() / 60)} minutes",
                }
                for b in bursts[:3]
            ],
        },
        description=f'{len(bursts)} periods of burst activity detected' if bursts
        else 'No burst activity patterns detected',
        importance='medium',
    )


def detect_cyclical_behavior(transactions: Sequence[TransferRecord]) -> Pattern:
    """Detect activity concentrated on particular days of the week."""
    timed = _timed(transactions)
    if len(timed) < 10:
        return Pattern(type=CYCLICAL, is_detected=False)

    counter = Counter(_weekday(tx.timestamp) for tx in timed)
    counts = [counter.get(day, 0) for day in range(7)]
    cv = stats.coefficient_of_variation(counts)
    has_weekly_pattern = cv > 0.5
    busiest = max(counts)
    popular = [WEEKDAYS[day] for day, count in enumerate(counts) if count == busiest]

    return Pattern(
        type=CYCLICAL,
        is_detected=has_weekly_pattern,
        confidence=min(85, round_half_up(cv * 100)) if has_weekly_pattern else 0,
        details={
            'has_weekly_pattern': has_weekly_pattern,
            'popular_weekdays': popular,
            'weekday_data': [{'day': WEEKDAYS[d], 'transactions': counts[d]} for d in range(7)],
            'cyclicality_score': round_half_up(cv * 100),
        },
        description=f"Cyclical pattern detected with most activity on {', '.join(popular)}"
        if has_weekly_pattern else 'No significant cyclical patterns detected',
        importance='medium',
    )


def analyze_transaction_patterns(transactions: Union[TransferSet, Sequence[TransferRecord]],
                                 central_address: Optional[str] = None) -> List[Pattern]:
    """Run every detector and return the patterns that were detected."""
    if isinstance(transactions, TransferSet):
        central_address = central_address or transactions.address
        transactions = transactions.all
    if not transactions:
        return []

    ordered = _chronological(transactions)
    candidates = [
        detect_periodic_transfers(ordered),
        detect_round_number_transfers(ordered),
        *detect_distribution_patterns(ordered, central_address),
        detect_whale_transfers(ordered),
        detect_accumulation_pattern(ordered, central_address),
        detect_burst_activity(ordered),
        detect_cyclical_behavior(ordered),
    ]
    return [pattern for pattern in candidates if pattern.is_detected]


def categorize_wallet_behavior(patterns: Sequence[Pattern]) -> WalletBehavior:
    """Map detected pattern types to a wallet behavior label."""
    if not patterns:
        return WalletBehavior(type='Unknown', confidence=0)

    types = {p.type for p in patterns}
    behaviors = []
    confidence = 50

    if BURST in types or WHALE in types:
        behaviors.append('Trader')
        confidence += 15
    if DISTRIBUTOR in types:
        behaviors.append('Distributor')
        confidence += 15
    if COLLECTOR in types:
        behaviors.append('Collector')
        confidence += 15
    if PERIODIC in types or CYCLICAL in types:
        behaviors.append('Regular User')
        confidence += 10
    if ACCUMULATION in types:
        behaviors.append('Hodler')
        confidence += 20

    wallet_type = 'General User'
    if 'Trader' in behaviors and 'Distributor' in behaviors:
        wallet_type = 'Market Maker'
        confidence += 10
    elif 'Trader' in behaviors:
        wallet_type = 'Trader'
    elif 'Distributor' in behaviors and PERIODIC in types:
        wallet_type = 'Payment Processor'
        confidence += 5
    elif 'Hodler' in behaviors and DISTRIBUTOR not in types:
        wallet_type = 'Long-term Investor'
        confidence += 5
    elif 'Regular User' in behaviors and ROUND_NUMBERS in types:
        wallet_type = 'Salary/Regular Payment Account'
        confidence += 5

    return WalletBehavior(type=wallet_type, confidence=min(95, confidence), behaviors=behaviors)


def risk_level(score: int) -> str:
    if score >= 80:
        return 'High'
    if score >= 60:
        return 'Medium'
    if score >= 40:
        return 'Low'
    if score >= 20:
        return 'Very Low'
    return 'Minimal'


def calculate_risk_score(patterns: Sequence[Pattern]) -> RiskAssessment:
    """Advisory heuristic risk score in [0, 100] from the detected patterns."""
    if not patterns:
        return RiskAssessment(score=0, level='Unknown')

    score = 50
    risk_factors = []
    protective_factors = []

    for pattern in patterns:
        if pattern.type == WHALE:
            score += 15
            risk_factors.append('Unusually large transactions detected')
        elif pattern.type == BURST:
            score += 10
            risk_factors.append('Burst transaction pattern suggests potential automated behavior')
        elif pattern.type == DISTRIBUTOR:
            recipients = pattern.details.get('unique_recipients', 0)
            if recipients > HIGH_FAN_OUT:
                score += 8
                risk_factors.append(f'High distribution to {recipients} different addresses')
        elif pattern.type == ROUND_NUMBERS:
            score -= 5
            protective_factors.append('Round number transactions suggest human-initiated transfers')
        elif pattern.type == PERIODIC:
            score -= 15
            protective_factors.append('Regular periodic transactions suggest legitimate scheduled activity')
        elif pattern.type == CYCLICAL:
            score -= 10
            protective_factors.append('Consistent cyclical behavior indicates normal usage patterns')

    score = max(0, min(100, score))
    return RiskAssessment(
        score=score,
        level=risk_level(score),
        factors=risk_factors + protective_factors,
        risk_factors=risk_factors,
        protective_factors=protective_factors,
    )
