# ========================
# src/charcoal/cleaning.py
# ========================

"""
Record Parsing Module

Converts raw extract rows (strings, sentinel-coded gaps) into Sample records.
"""

import logging
from typing import Any, Dict, Optional

from .records import Sample, is_missing

logger = logging.getLogger(__name__)


class SampleParser:
    """
    Parses raw extract rows into Samples.
    Numeric gaps (blank, unparseable or the sentinel) become None; only rows
    without a usable site id or sample index are dropped.
    """

    # Accepted spellings of the extract's column names
    COLUMN_ALIASES = {
        'site_id': ('site_id', 'id_site'),
        'sample_index': ('sample_index', 'id_sample_index', 'index'),
        'sample_id': ('sample_id', 'id_sample'),
        'depth': ('depth',),
        'est_age': ('est_age', 'age'),
        'quantity': ('quantity', 'quant'),
        'quant_type': ('quant_type', 'quantity_type', 'ID_QUANTTYPE'),
    }

    def __init__(self, sentinel: float = -9999.0):
        """
        Initialize the parser.

        Args:
            sentinel (float): Value used by the extract for missing numbers
        """
        self.sentinel = sentinel
        self.records_processed = 0
        self.records_dropped = 0
        self.missing_values = 0
        logger.info(f"SampleParser initialized (missing sentinel {sentinel})")

    def parse_record(self, record: Dict[str, Any]) -> Optional[Sample]:
        """
        Parse a single raw row.

        Args:
            record (dict): A dictionary representing a single row of data.

        Returns:
            Sample or None: The parsed sample, or None if the row is unusable.
        """
        self.records_processed += 1

        site_id = self._parse_int(self._get(record, 'site_id'))
        sample_index = self._parse_int(self._get(record, 'sample_index'))
        if site_id is None or site_id <= 0 or sample_index is None:
            self.records_dropped += 1
            logger.debug(f"Record dropped, no site id or sample index: {record}")
            return None

        depth = self._parse_float(self._get(record, 'depth'))
        est_age = self._parse_float(self._get(record, 'est_age'))
        quantity = self._parse_float(self._get(record, 'quantity'))
        sample_id = self._parse_int(self._get(record, 'sample_id'))

        code = self._get(record, 'quant_type')
        code = code.strip() if isinstance(code, str) else ''

        return Sample(
            site_id=site_id,
            sample_index=sample_index,
            sample_id=sample_id,
            depth=depth,
            est_age=est_age,
            quantity=quantity,
            quant_type_code=code,
        )

    def _get(self, record: Dict[str, Any], field: str) -> Any:
        for name in self.COLUMN_ALIASES[field]:
            if name in record:
                return record[name]
        return None

    def _parse_float(self, value: Any) -> Optional[float]:
        """Convert to float; blanks, junk and the sentinel become None."""
        if isinstance(value, str):
            value = value.strip()
            if not value or value.upper() in ('NA', 'NULL', 'NONE'):
                self.missing_values += 1
                return None
        try:
            number = float(value)
        except (ValueError, TypeError):
            self.missing_values += 1
            return None
        if is_missing(number, self.sentinel):
            self.missing_values += 1
            return None
        return number

    def _parse_int(self, value: Any) -> Optional[int]:
        try:
            number = float(value)
        except (ValueError, TypeError):
            return None
        if is_missing(number, self.sentinel) or not number.is_integer():
            return None
        return int(number)

    def get_statistics(self) -> Dict[str, Any]:
        """Get parsing statistics."""
        parsed = self.records_processed - self.records_dropped
        return {
            'records_processed': self.records_processed,
            'records_dropped': self.records_dropped,
            'records_parsed': parsed,
            'missing_values': self.missing_values,
            'success_rate': parsed / self.records_processed * 100 if self.records_processed > 0 else 0
        }
