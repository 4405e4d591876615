# ========================
# src/charcoal/ingestion.py
# ========================

"""
Data Ingestion Module

Reads the raw sample extract, the site list and the per-site enriched files
written by the derivation pass.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from .records import is_missing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SiteEntry:
    site_id: int
    site_name: str


class CSVReader:
    """
    A memory-efficient CSV reader for the raw sample extract.
    Rows are streamed; only one site's rows are held at a time.
    """

    def __init__(self, file_path):
        """
        Initialize the CSV reader.

        Args:
            file_path (str): Path to the CSV file to read
        """
        self.file_path = file_path
        self.header = []
        logger.info(f"Initialized CSVReader for file: {file_path}")

    def _rows(self) -> Iterator[dict]:
        try:
            with open(self.file_path, 'r', newline='', encoding='utf-8') as f:
                reader = csv.DictReader(f)
                self.header = reader.fieldnames
                logger.info(f"CSV header: {self.header}")
                row_count = 0
                for row in reader:
                    row_count += 1
                    yield row
                logger.info(f"Total rows processed: {row_count}")
        except FileNotFoundError:
            logger.error(f"File '{self.file_path}' was not found")
            raise

    def read_in_chunks(self, chunk_size):
        """
        A generator that yields a list of dictionaries for each chunk of data.

        Args:
            chunk_size (int): The number of rows to yield per chunk.

        Yields:
            list[dict]: A list of dictionaries representing a chunk of rows.
        """
        chunk = []
        for row in self._rows():
            chunk.append(row)
            if len(chunk) == chunk_size:
                logger.debug(f"Yielding chunk with {len(chunk)} rows")
                yield chunk
                chunk = []

        if chunk:
            logger.debug(f"Yielding final chunk with {len(chunk)} rows")
            yield chunk

    def read_sites(self, site_columns: Sequence[str] = ('site_id',)) -> Iterator[Tuple[str, List[dict]]]:
        """
        Yield (site id, rows) for each consecutive run of rows of one site.

        Row order inside a site is kept exactly as in the file. A site id that
        reappears after another site starts a new group.

        Args:
            site_columns (Sequence[str]): Accepted names of the site identifier
                column; the first one present in the header is used

        Yields:
            tuple: Raw site id string and that site's rows

        Raises:
            ValueError: if the header has none of the site columns
        """
        site_column = None
        current_site = None
        rows: List[dict] = []
        for row in self._rows():
            if site_column is None:
                site_column = next((c for c in site_columns if c in row), None)
                if site_column is None:
                    raise ValueError(
                        f"No site column {list(site_columns)} in header of {self.file_path}: {self.header}"
                    )
            site = (row.get(site_column) or '').strip()
            if rows and site != current_site:
                yield current_site, rows
                rows = []
            current_site = site
            rows.append(row)

        if rows:
            yield current_site, rows


def read_site_list(file_path) -> List[SiteEntry]:
    """
    Read the site list (columns: site_id, site_name).

    Rows whose site id is not a positive integer are skipped with a warning.
    """
    entries = []
    with open(file_path, 'r', newline='', encoding='utf-8') as f:
        for row in csv.DictReader(f):
            raw_id = (row.get('site_id') or '').strip()
            try:
                site_id = int(float(raw_id))
            except ValueError:
                logger.warning(f"Site list row with invalid site_id skipped: {row}")
                continue
            if site_id <= 0:
                logger.warning(f"Site list row with non-positive site_id skipped: {row}")
                continue
            entries.append(SiteEntry(site_id, (row.get('site_name') or '').strip()))

    logger.info(f"Read {len(entries)} sites from {file_path}")
    return entries


def _to_float(text: Optional[str], sentinel: float) -> Optional[float]:
    if text is None or not text.strip():
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return None if is_missing(value, sentinel) else value


def read_enriched_site(file_path, sentinel: float,
                       value_column: str = 'influx') -> List[Tuple[Optional[float], Optional[float]]]:
    """
    Load (est_age, value) pairs from a per-site derivation output file.

    Raises:
        FileNotFoundError: if the site file does not exist
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Site data file not found: {path}")

    points = []
    with open(path, 'r', newline='', encoding='utf-8') as f:
        for row in csv.DictReader(f):
            points.append((
                _to_float(row.get('est_age'), sentinel),
                _to_float(row.get(value_column), sentinel),
            ))
    logger.debug(f"Loaded {len(points)} samples from {path}")
    return points
