# ========================
# src/charcoal/records.py
# ========================

"""
Record Types

Shared value types for the derivation and binning stages. Missing numeric
values are represented as None; the external sentinel only exists at the
CSV boundary (see to_sentinel / is_missing).
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def is_missing(value: Any, sentinel: float) -> bool:
    """True if a raw value stands for a missing measurement."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return value == sentinel


def to_sentinel(value: Optional[float], sentinel: float) -> float:
    """Convert an internal value to its external representation."""
    return sentinel if value is None else value


def site_label(site_id: int) -> str:
    """Zero-padded site label used in file names, e.g. 1 -> '0001'."""
    return f"{site_id:04d}"


class QuantityType(Enum):
    """Quantity-type codes found in the raw extract."""
    INFL = "INFL"
    CONC = "CONC"
    C0P0 = "C0P0"
    SOIL = "SOIL"
    OTHE = "OTHE"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def from_code(cls, code: Optional[str]) -> 'QuantityType':
        if not code:
            return cls.UNRECOGNIZED
        try:
            member = cls(code.strip().upper())
        except ValueError:
            return cls.UNRECOGNIZED
        return member


class Coverage(Enum):
    """How many samples of a site carry a value for a field."""
    ALL = "all"
    PARTIAL = "partial"
    NONE = "none"

    @classmethod
    def from_counts(cls, present: int, total: int) -> 'Coverage':
        if present == 0:
            return cls.NONE
        if present < total:
            return cls.PARTIAL
        return cls.ALL


@dataclass(frozen=True)
class Sample:
    """One raw sample of a site, in source order."""
    site_id: int
    sample_index: int
    sample_id: Optional[int]
    depth: Optional[float]
    est_age: Optional[float]
    quantity: Optional[float]
    quant_type_code: str = ""


@dataclass(frozen=True)
class EnrichedSample:
    """A sample with the derived sedimentation and influx fields."""
    sample: Sample
    thickness: Optional[float] = None
    dep_time: Optional[float] = None
    sed_rate: Optional[float] = None
    unit_dep_time: Optional[float] = None
    concentration: Optional[float] = None
    influx: Optional[float] = None
    conc_provenance: str = ""
    influx_provenance: str = ""

    OUTPUT_COLUMNS = (
        'sample_index', 'sample_id', 'depth', 'est_age', 'sed_rate', 'quantity',
        'concentration', 'influx', 'quant_type', 'conc_provenance', 'influx_provenance'
    )

    def to_output_row(self, sentinel: float) -> Dict[str, Any]:
        """Output record with missing values replaced by the sentinel."""
        s = self.sample
        return {
            'sample_index': s.sample_index,
            'sample_id': to_sentinel(s.sample_id, sentinel),
            'depth': to_sentinel(s.depth, sentinel),
            'est_age': to_sentinel(s.est_age, sentinel),
            'sed_rate': to_sentinel(self.sed_rate, sentinel),
            'quantity': to_sentinel(s.quantity, sentinel),
            'concentration': to_sentinel(self.concentration, sentinel),
            'influx': to_sentinel(self.influx, sentinel),
            'quant_type': s.quant_type_code,
            'conc_provenance': self.conc_provenance,
            'influx_provenance': self.influx_provenance,
        }


@dataclass(frozen=True)
class SiteFlags:
    """Data-quality indicators for one site. Never mutated once built."""
    depth_coverage: Coverage
    age_coverage: Coverage
    quantity_coverage: Coverage
    sed_rate_coverage: Coverage
    depth_reversal: bool = False
    age_reversal: bool = False
    nonpositive_sed_rate: bool = False
    all_zero_influx: bool = False

    @property
    def partial_depth(self) -> bool:
        return self.depth_coverage is Coverage.PARTIAL

    @property
    def partial_age(self) -> bool:
        return self.age_coverage is Coverage.PARTIAL

    @property
    def partial_quantity(self) -> bool:
        return self.quantity_coverage is Coverage.PARTIAL

    @property
    def partial_sed_rate(self) -> bool:
        return self.sed_rate_coverage is Coverage.PARTIAL

    FLAG_NAMES = (
        'partial_depth', 'partial_age', 'partial_quantity', 'partial_sed_rate',
        'depth_reversal', 'age_reversal', 'nonpositive_sed_rate', 'all_zero_influx'
    )

    def triggered(self) -> List[str]:
        """Names of the flags raised for this site."""
        return [name for name in self.FLAG_NAMES if getattr(self, name)]

    def to_row(self, site_id: int) -> Dict[str, Any]:
        row: Dict[str, Any] = {'site_id': site_id}
        for name in self.FLAG_NAMES:
            row[name] = int(getattr(self, name))
        return row


@dataclass(frozen=True)
class LogEvent:
    """A single line of the per-site processing log."""
    site_id: int
    level: str
    message: str

    def format_line(self) -> str:
        return f"{self.level.upper():<7} {self.message}"


@dataclass
class DerivationResult:
    site_id: int
    samples: List[EnrichedSample]
    flags: SiteFlags
    quant_type: QuantityType
    events: List[LogEvent] = field(default_factory=list)


@dataclass(frozen=True)
class BinGrid:
    """
    Evenly spaced age grid. Bin k (1-based) is centred on start + (k - 1) * step.
    """
    start: float
    end: float
    step: float

    def __post_init__(self):
        if not self.step > 0:
            raise ValueError(f"Bin step must be positive, got {self.step}")
        if self.end < self.start:
            raise ValueError(f"Bin grid end {self.end} is before start {self.start}")

    @property
    def n_bins(self) -> int:
        return int(math.floor((self.end - self.start) / self.step)) + 1

    @property
    def ages(self) -> Tuple[float, ...]:
        return tuple(self.start + k * self.step for k in range(self.n_bins))

    def age_for(self, index: int) -> float:
        """Centre age of bin `index` (1-based)."""
        if not 1 <= index <= self.n_bins:
            raise IndexError(f"Bin index {index} outside grid 1..{self.n_bins}")
        return self.ages[index - 1]


@dataclass(frozen=True)
class BinnedRecord:
    bin_index: int
    bin_age: float
    mean_value: float
    sample_count: int
    mean_age: float

    OUTPUT_COLUMNS = ('bin_age', 'mean_value', 'sample_count')

    def to_output_row(self) -> Dict[str, Any]:
        return {
            'bin_age': self.bin_age,
            'mean_value': self.mean_value,
            'sample_count': self.sample_count,
        }


@dataclass
class BinningResult:
    site_id: int
    records: List[BinnedRecord] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None
    events: List[LogEvent] = field(default_factory=list)
