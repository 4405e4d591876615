# ========================
# src/charcoal/derivation.py
# ========================

"""
Derivation Module

Turns one site's ordered raw samples into enriched samples: thickness,
deposition time, sedimentation rate, concentration and influx, together with
the site's data-quality flags and log events.

All neighbour arithmetic is positional. Samples are never re-sorted.
"""

import logging
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .records import (
    Coverage, DerivationResult, EnrichedSample, LogEvent, QuantityType,
    Sample, SiteFlags
)

logger = logging.getLogger(__name__)

CM_PER_M = 100.0

# (concentration provenance, influx provenance)
PROVENANCE = {
    QuantityType.INFL: ("calculated from influx", "data"),
    QuantityType.CONC: ("data", "calculated from conc"),
    QuantityType.C0P0: ("C0P0", "calculated from C0P0"),
}
COPIED = ("copied from quant", "copied from quant")


class Position(Enum):
    FIRST = "first"
    INTERIOR = "interior"
    LAST = "last"
    ONLY = "only"


def position_of(i: int, n: int) -> Position:
    """Position of the 0-based sample `i` in a site of `n` samples."""
    if n == 1:
        return Position.ONLY
    if i == 0:
        return Position.FIRST
    if i == n - 1:
        return Position.LAST
    return Position.INTERIOR


def _sub(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return a - b


def _mul(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return a * b


def _midpoint(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return (a + b) / 2.0


def _sed_rate(thickness: Optional[float], dep_time: Optional[float]) -> Optional[float]:
    if thickness is None or dep_time is None or dep_time <= 0:
        return None
    return thickness / dep_time


def _inverse(rate: Optional[float]) -> Optional[float]:
    if rate is None or rate == 0:
        return None
    return 1.0 / rate


def compute_rates(samples: Sequence[Sample]) -> List[Tuple[Optional[float], ...]]:
    """
    Compute (thickness, dep_time, sed_rate, unit_dep_time) for every sample.

    Thickness is in centimetres (depths are given in metres). The last sample
    reuses thickness and rates of the one before it; a lone sample gets none.
    """
    n = len(samples)
    depth = [s.depth for s in samples]
    age = [s.est_age for s in samples]
    rates: List[Tuple[Optional[float], ...]] = []

    for i in range(n):
        pos = position_of(i, n)

        if pos is Position.ONLY:
            rates.append((None, None, None, None))
            continue

        if pos is Position.LAST:
            thickness, _, sed_rate, unit_dep_time = rates[i - 1]
            dep_time = _sub(age[i], age[i - 1])
            rates.append((thickness, dep_time, sed_rate, unit_dep_time))
            continue

        thickness = _mul(_sub(depth[i + 1], depth[i]), CM_PER_M)
        if pos is Position.FIRST:
            dep_time = _sub(age[i + 1], age[i])
        else:
            dep_time = _sub(_midpoint(age[i + 1], age[i]), _midpoint(age[i], age[i - 1]))

        sed_rate = _sed_rate(thickness, dep_time)
        rates.append((thickness, dep_time, sed_rate, _inverse(sed_rate)))

    return rates


def convert_quantity(quant_type: QuantityType,
                     quantity: Optional[float],
                     sed_rate: Optional[float],
                     unit_dep_time: Optional[float]) -> Tuple[Optional[float], Optional[float], str, str]:
    """
    Return (concentration, influx, conc provenance, influx provenance) for
    one sample.

    The derived member falls back to a copy of the quantity when its
    multiplier is unavailable or the sedimentation rate is exactly zero, and
    its provenance then reads "copied from quant".
    """
    conc_prov, influx_prov = PROVENANCE.get(quant_type, COPIED)
    if quantity is None:
        return None, None, conc_prov, influx_prov

    rate_usable = sed_rate is not None and sed_rate != 0

    if quant_type is QuantityType.INFL:
        if rate_usable and unit_dep_time is not None:
            return quantity * unit_dep_time, quantity, conc_prov, influx_prov
        return quantity, quantity, COPIED[0], influx_prov

    if quant_type in (QuantityType.CONC, QuantityType.C0P0):
        if rate_usable:
            return quantity, quantity * sed_rate, conc_prov, influx_prov
        return quantity, quantity, conc_prov, COPIED[1]

    return quantity, quantity, conc_prov, influx_prov


def _reversal_positions(values: Sequence[Optional[float]]) -> List[int]:
    """1-based indices i where values[i] <= values[i-1], both present."""
    positions = []
    for i in range(1, len(values)):
        prev, cur = values[i - 1], values[i]
        if prev is not None and cur is not None and cur <= prev:
            positions.append(i + 1)
    return positions


class DerivationEngine:
    """
    Derives enriched samples and site flags for one site at a time.
    Holds no per-site state, so one instance can serve concurrent workers.
    """

    def derive_site(self, site_id: int, samples: Sequence[Sample]) -> Optional[DerivationResult]:
        """
        Run the derivation for one site.

        Args:
            site_id (int): Site identifier
            samples (Sequence[Sample]): Samples in source order

        Returns:
            DerivationResult or None: None when the site has no samples.
        """
        n = len(samples)
        if n == 0:
            logger.debug(f"Site {site_id}: no samples, skipped")
            return None

        events: List[LogEvent] = []

        def emit(level: str, message: str) -> None:
            events.append(LogEvent(site_id, level, message))
            logger.log(logging.getLevelName(level.upper()), f"Site {site_id}: {message}")

        emit("info", f"Site {site_id} {n} samples")

        rates = compute_rates(samples)

        # Quantity type is decided once per site, from the first sample
        quant_type = QuantityType.from_code(samples[0].quant_type_code)
        if quant_type is QuantityType.UNRECOGNIZED:
            emit("info", f"quant_type {samples[0].quant_type_code!r} not recognized, copying quant")
        else:
            emit("info", f"quant_type {quant_type.value}")

        enriched = []
        for sample, (thickness, dep_time, sed_rate, unit_dep_time) in zip(samples, rates):
            conc, influx, conc_prov, influx_prov = convert_quantity(
                quant_type, sample.quantity, sed_rate, unit_dep_time
            )
            enriched.append(EnrichedSample(
                sample=sample,
                thickness=thickness,
                dep_time=dep_time,
                sed_rate=sed_rate,
                unit_dep_time=unit_dep_time,
                concentration=conc,
                influx=influx,
                conc_provenance=conc_prov,
                influx_provenance=influx_prov,
            ))

        flags = self._build_flags(samples, enriched, emit)
        return DerivationResult(site_id, enriched, flags, quant_type, events)

    def _build_flags(self, samples, enriched, emit) -> SiteFlags:
        n = len(samples)
        depths = [s.depth for s in samples]
        ages = [s.est_age for s in samples]

        def coverage(values):
            return Coverage.from_counts(sum(v is not None for v in values), n)

        depth_cov = coverage(depths)
        age_cov = coverage(ages)
        quant_cov = coverage(s.quantity for s in samples)
        sed_cov = coverage(e.sed_rate for e in enriched)

        for name, cov in (("depth", depth_cov), ("age", age_cov),
                          ("quantity", quant_cov), ("sed rate", sed_cov)):
            if cov is Coverage.PARTIAL:
                emit("warning", f"partial {name}: present for some but not all samples")

        age_reversals = _reversal_positions(ages)
        depth_reversals = _reversal_positions(depths)
        for i in age_reversals:
            emit("debug", f"age reversal at sample {i}: {ages[i - 1]} <= {ages[i - 2]}")
        for i in depth_reversals:
            emit("debug", f"depth reversal at sample {i}: {depths[i - 1]} <= {depths[i - 2]}")
        if age_reversals:
            emit("warning", "age reversal")
        if depth_reversals:
            emit("warning", "depth reversal")

        nonpositive = [e.sample.sample_index for e in enriched
                       if e.sed_rate is not None and e.sed_rate <= 0]
        if nonpositive:
            emit("warning", f"non-positive sed rate at samples {nonpositive}")

        nonzero_influx = sum(1 for e in enriched if e.influx is not None and e.influx != 0)
        if nonzero_influx == 0:
            emit("warning", "all influx values zero or missing")

        return SiteFlags(
            depth_coverage=depth_cov,
            age_coverage=age_cov,
            quantity_coverage=quant_cov,
            sed_rate_coverage=sed_cov,
            depth_reversal=bool(depth_reversals),
            age_reversal=bool(age_reversals),
            nonpositive_sed_rate=bool(nonpositive),
            all_zero_influx=nonzero_influx == 0,
        )
