# ========================
# src/charcoal/transforms.py
# ========================

"""
Value Transforms

Transforms applied to a site's influx series before binning. A transform
name is a single method or a hyphen-joined chain, applied left to right
(e.g. "minmax-log-zt").
"""

import math
import logging
import statistics
from typing import Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Point = Tuple[Optional[float], Optional[float]]


def _finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


def raw(points: Sequence[Point], base_period: Tuple[float, float]) -> List[Point]:
    return list(points)


def minmax(points: Sequence[Point], base_period: Tuple[float, float]) -> List[Point]:
    """Rescale finite values to [0, 1]. A constant series maps to zero."""
    values = [v for _, v in points if _finite(v)]
    if not values:
        return list(points)
    lo, hi = min(values), max(values)
    span = hi - lo
    out = []
    for age, value in points:
        if not _finite(value):
            out.append((age, value))
        elif span == 0:
            out.append((age, 0.0))
        else:
            out.append((age, (value - lo) / span))
    return out


def log(points: Sequence[Point], base_period: Tuple[float, float]) -> List[Point]:
    """Natural log; zero gives -inf and negatives give NaN."""
    out = []
    for age, value in points:
        if value is None or math.isnan(value):
            out.append((age, value))
        elif value == 0:
            out.append((age, -math.inf))
        elif value < 0:
            out.append((age, math.nan))
        else:
            out.append((age, math.log(value)))
    return out


def zscore(points: Sequence[Point], base_period: Tuple[float, float]) -> List[Point]:
    """
    Standardize against the mean and standard deviation of the base period.

    Only finite values with an age inside the base period contribute. Without
    at least two such values, or with zero spread, every value becomes missing.
    """
    base_start, base_end = base_period
    base = [v for a, v in points
            if _finite(v) and a is not None and base_start <= a <= base_end]
    if len(base) < 2:
        logger.debug(f"z-score: {len(base)} base-period values, series set missing")
        return [(age, None) for age, _ in points]

    mean = statistics.mean(base)
    stdev = statistics.stdev(base)
    if stdev == 0:
        logger.debug("z-score: zero spread in base period, series set missing")
        return [(age, None) for age, _ in points]

    return [(age, None if value is None else (value - mean) / stdev) for age, value in points]


TRANSFORMS: Dict[str, Callable[[Sequence[Point], Tuple[float, float]], List[Point]]] = {
    'raw': raw,
    'minmax': minmax,
    'log': log,
    'zt': zscore,
}


def parse_transform(name: str) -> List[str]:
    """Split and validate a transform name."""
    methods = [m.strip().lower() for m in name.split('-') if m.strip()]
    if not methods:
        raise ValueError("Empty transform name")
    unknown = [m for m in methods if m not in TRANSFORMS]
    if unknown:
        raise ValueError(f"Unknown transform method(s) {unknown}; known: {sorted(TRANSFORMS)}")
    return methods


def apply_transform(name: str,
                    points: Sequence[Point],
                    base_period: Tuple[float, float]) -> List[Point]:
    """
    Apply a (possibly chained) transform to a site's (age, value) series.

    Args:
        name (str): Transform name, e.g. "zt" or "minmax-log-zt"
        points (Sequence[tuple]): (age, value) pairs
        base_period (tuple): (start age, end age) used by "zt"

    Returns:
        list[tuple]: Transformed (age, value) pairs, same length and order
    """
    result = list(points)
    for method in parse_transform(name):
        result = TRANSFORMS[method](result, base_period)
    return result
