# ========================
# src/charcoal/binning.py
# ========================

"""
Binning Module

Maps one site's irregularly spaced (age, value) samples onto a fixed,
evenly spaced age grid and averages them per bin. Only occupied bins are
returned; nothing is interpolated.
"""

import math
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from .records import BinGrid, BinnedRecord, BinningResult, LogEvent

logger = logging.getLogger(__name__)

Point = Tuple[Optional[float], Optional[float]]


def bin_index(age: float, grid: BinGrid) -> int:
    """
    1-based index of the bin an age falls into.

    Bin k covers (centre - step/2, centre + step/2]; the ceiling (not
    round or floor) is what puts the upper half-step boundary inside.
    """
    return int(math.ceil((age - grid.start - grid.step / 2.0) / grid.step)) + 1


def _is_present(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value)


def count_values(points: Sequence[Point]) -> Tuple[int, int]:
    """Return (present, infinite) value counts. NaN counts as absent."""
    present = 0
    infinite = 0
    for _, value in points:
        if _is_present(value):
            present += 1
            if math.isinf(value):
                infinite += 1
    return present, infinite


class BinningEngine:
    """
    Aggregates per-site samples onto a BinGrid.
    """

    def __init__(self, grid: BinGrid):
        """
        Initialize the binning engine.

        Args:
            grid (BinGrid): Target age grid
        """
        self.grid = grid
        self._ages = grid.ages
        logger.info(
            f"BinningEngine initialized: start={grid.start}, end={grid.end}, "
            f"step={grid.step}, bins={grid.n_bins}"
        )

    def is_eligible(self, points: Sequence[Point]) -> bool:
        """A site is binned only if it has present values that are not all infinite."""
        present, infinite = count_values(points)
        return present > 0 and infinite < present

    def bin_site(self, site_id: int, points: Sequence[Point]) -> BinningResult:
        """
        Bin one site.

        Args:
            site_id (int): Site identifier
            points (Sequence[tuple]): (age, value) pairs in time order

        Returns:
            BinningResult: Occupied bins in ascending index order, or a
                           skipped result when the site is not eligible.
        """
        result = BinningResult(site_id=site_id)
        present, infinite = count_values(points)

        if not (present > 0 and infinite < present):
            reason = f"{present} present values, {infinite} non-finite"
            result.skipped = True
            result.skip_reason = reason
            result.events.append(LogEvent(site_id, "warning", f"Site {site_id} skipped: {reason}"))
            logger.info(f"Site {site_id} skipped for binning: {reason}")
            return result

        groups: Dict[int, List[Tuple[float, float]]] = defaultdict(list)
        outside = 0
        for age, value in points:
            if not _is_present(value) or math.isinf(value):
                continue
            if age is None or not math.isfinite(age):
                continue
            index = bin_index(age, self.grid)
            if not 1 <= index <= self.grid.n_bins:
                outside += 1
                continue
            groups[index].append((age, value))

        if outside:
            result.events.append(LogEvent(
                site_id, "debug", f"Site {site_id}: {outside} samples outside the bin grid"
            ))

        # Grouping order is insertion order, not bin order
        for index in sorted(groups):
            members = groups[index]
            if not members:
                continue
            count = len(members)
            mean_value = math.fsum(v for _, v in members) / count
            mean_age = math.fsum(a for a, _ in members) / count
            if math.isnan(mean_value):
                continue
            result.records.append(BinnedRecord(
                bin_index=index,
                bin_age=self._ages[index - 1],
                mean_value=mean_value,
                sample_count=count,
                mean_age=mean_age,
            ))

        result.events.append(LogEvent(
            site_id, "info", f"Site {site_id} binned: {len(result.records)} occupied bins"
        ))
        logger.debug(f"Site {site_id}: {present} values into {len(result.records)} bins")
        return result
