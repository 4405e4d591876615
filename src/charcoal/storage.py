# ========================
# src/charcoal/storage.py
# ========================

"""
Data Storage Module

Writes per-site enriched tables, binned tables, site flags, the site log
and the run summary.
"""

import csv
import json
import logging
from typing import Any, Dict, Iterable, List
from pathlib import Path

from .records import BinnedRecord, DerivationResult, EnrichedSample, LogEvent, SiteFlags, site_label

logger = logging.getLogger(__name__)


def format_step(step: float) -> str:
    """Bin step as it appears in output labels: 20.0 -> '020', 2.5 -> '2.5'."""
    if float(step).is_integer():
        return f"{int(step):03d}"
    return f"{step:g}"


class DataSaver:
    """
    Saves pipeline results under one output directory.
    """

    SITE_LOG_NAME = "site_log.txt"

    def __init__(self, output_dir: str = "data/processed", sentinel: float = -9999.0):
        """
        Initialize the data saver.

        Args:
            output_dir (str): Directory to save output files
            sentinel (float): Value written for missing numbers
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.sites_dir = self.output_dir / "sites"
        self.sentinel = sentinel
        logger.info(f"DataSaver initialized with output directory: {self.output_dir}")

    def site_data_path(self, site_id: int) -> Path:
        return self.sites_dir / f"{site_label(site_id)}_data.csv"

    def binned_dir(self, transform: str, step: float) -> Path:
        return self.output_dir / f"binned_{transform}_{format_step(step)}"

    def binned_path(self, site_id: int, transform: str, step: float) -> Path:
        name = f"{site_label(site_id)}_binned_{transform}_{format_step(step)}.csv"
        return self.binned_dir(transform, step) / name

    def save_site_data(self, result: DerivationResult) -> str:
        """Save one site's enriched samples."""
        self.sites_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.site_data_path(result.site_id)
        rows = [s.to_output_row(self.sentinel) for s in result.samples]
        self._write_csv(file_path, list(EnrichedSample.OUTPUT_COLUMNS), rows)
        return str(file_path)

    def save_binned(self, site_id: int, records: List[BinnedRecord], transform: str, step: float) -> str:
        """Save one site's occupied bins."""
        file_path = self.binned_path(site_id, transform, step)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        rows = [r.to_output_row() for r in records]
        self._write_csv(file_path, list(BinnedRecord.OUTPUT_COLUMNS), rows)
        return str(file_path)

    def remove_site_data(self, site_id: int) -> bool:
        """Delete a site table left over from an earlier run. True if one existed."""
        return self._remove(self.site_data_path(site_id))

    def remove_binned(self, site_id: int, transform: str, step: float) -> bool:
        """Delete a binned table left over from an earlier run. True if one existed."""
        return self._remove(self.binned_path(site_id, transform, step))

    def _remove(self, file_path: Path) -> bool:
        if not file_path.is_file():
            return False
        file_path.unlink()
        logger.debug(f"Removed stale output {file_path}")
        return True

    def save_site_flags(self, flags_by_site: Dict[int, SiteFlags]) -> str:
        """Save one row of flags per derived site, ordered by site id."""
        file_path = self.output_dir / "site_flags.csv"
        headers = ['site_id'] + list(SiteFlags.FLAG_NAMES)
        rows = [flags.to_row(site_id) for site_id, flags in sorted(flags_by_site.items())]
        self._write_csv(file_path, headers, rows)
        return str(file_path)

    def start_site_log(self) -> str:
        """Truncate the site log at the start of a run."""
        file_path = self.output_dir / self.SITE_LOG_NAME
        file_path.write_text('', encoding='utf-8')
        return str(file_path)

    def append_site_log(self, events: Iterable[LogEvent]) -> None:
        """
        Append one site's events. Called from a single thread only, so lines
        of different sites never interleave.
        """
        file_path = self.output_dir / self.SITE_LOG_NAME
        with open(file_path, 'a', encoding='utf-8') as f:
            for event in events:
                f.write(event.format_line() + "\n")

    def save_summary(self, summary_data: Dict[str, Any]) -> str:
        """Save the run summary as JSON."""
        file_path = self.output_dir / "pipeline_summary.json"

        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(summary_data, f, indent=2, ensure_ascii=False, default=str)

        logger.info(f"Summary saved to {file_path}")
        return str(file_path)

    def _write_csv(self, file_path: Path, headers: List[str], data_items: List[Dict]) -> None:
        """Write data to CSV file."""
        try:
            with open(file_path, 'w', newline='', encoding='utf-8') as f:
                writer = csv.DictWriter(f, fieldnames=headers)
                writer.writeheader()
                writer.writerows(data_items)

            logger.debug(f"Saved {len(data_items)} records to {file_path}")

        except OSError as e:
            logger.error(f"Error writing CSV file {file_path}: {e}")
            raise

    def create_data_dictionary(self) -> str:
        """Create a data dictionary explaining all output files."""
        file_path = self.output_dir / "DATA_DICTIONARY.md"

        content = f"""# Data Dictionary

Missing numeric values are written as {self.sentinel:g}. Site labels are
zero-padded to four digits (site 1 -> 0001).

## sites/SSSS_data.csv
One row per sample, in core order.

| Column | Type | Description |
|--------|------|-------------|
| sample_index | integer | 1-based position of the sample in the core |
| sample_id | integer | Source sample identifier |
| depth | float | Depth in metres |
| est_age | float | Estimated age |
| sed_rate | float | Sedimentation rate (cm per age unit) |
| quantity | float | Measured quantity as reported |
| concentration | float | Concentration |
| influx | float | Influx |
| quant_type | string | Quantity-type code of the site (INFL, CONC, C0P0, SOIL, OTHE, ...) |
| conc_provenance | string | data / calculated from ... / copied from quant |
| influx_provenance | string | data / calculated from ... / copied from quant |

## binned_TRANSFORM_STEP/SSSS_binned_TRANSFORM_STEP.csv
One row per occupied bin; empty bins are not written.

| Column | Type | Description |
|--------|------|-------------|
| bin_age | float | Bin centre age |
| mean_value | float | Mean of the transformed values in the bin |
| sample_count | integer | Number of samples averaged |

## site_flags.csv
One row per site, 1 when the indicator was raised: partial_depth,
partial_age, partial_quantity, partial_sed_rate (present for some but not
all samples), depth_reversal, age_reversal, nonpositive_sed_rate,
all_zero_influx.

## site_log.txt
Per-site processing log: sample counts, quantity type, anomalies and skips.

## pipeline_summary.json
Counts of sites and samples processed, skipped and written.
"""

        with open(file_path, 'w', encoding='utf-8') as f:
            f.write(content)

        logger.info(f"Data dictionary created at {file_path}")
        return str(file_path)
