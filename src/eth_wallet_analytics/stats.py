"""
Descriptive statistics shared by the analyzers.

All helpers return 0.0 instead of raising or producing NaN on empty input,
zero mean or zero variance, so detectors degrade quietly on sparse histories.
Standard deviation is the population form.
"""

import math
from dataclasses import dataclass
from typing import Sequence, List


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def std_dev(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    avg = mean(values)
    variance = sum((v - avg) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def coefficient_of_variation(values: Sequence[float]) -> float:
    """stddev / mean; 0.0 when the mean is zero."""
    avg = mean(values)
    if avg == 0:
        return 0.0
    return std_dev(values) / avg


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return float(ordered[mid])


def intervals(points: Sequence[float]) -> List[float]:
    """Successive differences of an ascending sequence."""
    return [points[i] - points[i - 1] for i in range(1, len(points))]


@dataclass
class Regression:
    slope: float = 0.0
    intercept: float = 0.0
    r_squared: float = 0.0


def linear_regression(xs: Sequence[float], ys: Sequence[float]) -> Regression:
    """Ordinary least squares fit of ys against xs."""
    n = min(len(xs), len(ys))
    if n < 2:
        return Regression(intercept=float(ys[0]) if n == 1 else 0.0)

    xs, ys = xs[:n], ys[:n]
    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_xx = sum(x * x for x in xs)

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return Regression(intercept=sum_y / n)

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    y_mean = sum_y / n
    ss_total = sum((y - y_mean) ** 2 for y in ys)
    if ss_total == 0:
        return Regression(slope=slope, intercept=intercept)
    ss_residual = sum((y - (slope * x + intercept)) ** 2 for x, y in zip(xs, ys))

    return Regression(slope=slope, intercept=intercept, r_squared=1 - ss_residual / ss_total)


def jaccard(first: set, second: set) -> float:
    """Jaccard similarity of two sets; 0.0 if either is empty."""
    if not first or not second:
        return 0.0
    return len(first & second) / len(first | second)


def relative_difference(a: float, b: float) -> float:
    """|a - b| / max(a, b), capped at 1; 0.0 when both are zero."""
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 0.0
    return min(1.0, abs(a - b) / largest)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))
