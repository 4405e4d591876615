# ========================
# src/utils/data_generator.py
# ========================

"""
Data Generation Utilities

Synthetic charcoal extracts with controlled anomaly injection, used by the
demo entry point, the API and the large-scale test script.
"""

import csv
import random
import logging
from typing import List, Dict, Any, Optional
from pathlib import Path

logger = logging.getLogger(__name__)

EXTRACT_HEADER = ['site_id', 'sample_index', 'sample_id', 'depth', 'est_age', 'quantity', 'quant_type']


class DataGenerator:
    """
    Generator for realistic raw sample extracts and site lists.
    """

    # Quantity-type codes and how often they occur
    QUANT_TYPES = [
        ("CONC", 0.45), ("INFL", 0.15), ("C0P0", 0.15),
        ("SOIL", 0.1), ("OTHE", 0.1), ("PERC", 0.05),
    ]

    SITE_NAMES = [
        "Lake", "Bog", "Mire", "Pond", "Fen", "Marsh", "Loch", "Tarn",
    ]

    def __init__(self, seed: Optional[int] = None, sentinel: float = -9999.0):
        """
        Initialize data generator.

        Args:
            seed (int): Random seed for reproducible data generation
            sentinel (float): Value written for missing numbers
        """
        self.rng = random.Random(seed)
        self.sentinel = sentinel
        logger.info(f"DataGenerator initialized with seed: {seed}")

    def generate_dataset(self,
                         file_path: str,
                         num_sites: int,
                         site_list_path: Optional[str] = None,
                         anomaly_rate: float = 0.2,
                         max_samples: int = 80) -> Dict[str, Any]:
        """
        Generate a raw extract (and optionally a site list).

        Args:
            file_path (str): Output extract CSV path
            num_sites (int): Number of sites to generate
            site_list_path (str): Optional site list CSV path
            anomaly_rate (float): Fraction of sites with an injected anomaly
            max_samples (int): Upper bound on samples per site

        Returns:
            dict: Generation statistics
        """
        logger.info(f"Generating {num_sites:,} sites with {anomaly_rate:.1%} anomaly rate...")

        stats = {
            'total_sites': num_sites,
            'total_samples': 0,
            'anomaly_rate': anomaly_rate,
            'sites_with_anomalies': 0,
            'anomaly_types': {}
        }

        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        sample_id = 1

        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(EXTRACT_HEADER)

            for site_id in range(1, num_sites + 1):
                rows = self._generate_site(site_id, sample_id, max_samples)
                if self.rng.random() < anomaly_rate:
                    stats['sites_with_anomalies'] += 1
                    self._inject_anomaly(rows, stats)
                writer.writerows(rows)
                sample_id += len(rows)
                stats['total_samples'] += len(rows)

        if site_list_path:
            self.generate_site_list(site_list_path, num_sites)

        logger.info(f"Dataset generated: {file_path}")
        logger.info(f"Anomaly breakdown: {stats['anomaly_types']}")
        return stats

    def generate_site_list(self, file_path: str, num_sites: int) -> str:
        """Write a site list covering sites 1..num_sites."""
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(['site_id', 'site_name'])
            for site_id in range(1, num_sites + 1):
                name = f"{self.rng.choice(self.SITE_NAMES)} {site_id:04d}"
                writer.writerow([site_id, name])
        return file_path

    def _generate_site(self, site_id: int, first_sample_id: int, max_samples: int) -> List[List[Any]]:
        """Generate one core: depths in metres and ages both increasing."""
        n = self.rng.randint(2, max_samples)
        codes, weights = zip(*self.QUANT_TYPES)
        quant_type = self.rng.choices(codes, weights=weights)[0]

        depth = round(self.rng.uniform(0.0, 0.5), 3)
        age = round(self.rng.uniform(-60, 500), 1)
        level = self.rng.uniform(1, 50)

        rows = []
        for i in range(n):
            quantity = round(max(0.0, self.rng.lognormvariate(0, 0.6) * level), 4)
            rows.append([site_id, i + 1, first_sample_id + i, depth, age, quantity, quant_type])
            depth = round(depth + self.rng.uniform(0.005, 0.05), 3)
            age = round(age + self.rng.uniform(5, 300), 1)
        return rows

    def _inject_anomaly(self, rows: List[List[Any]], stats: Dict[str, Any]) -> None:
        """Inject one kind of data-quality problem into a site."""
        anomaly = self.rng.choice([
            'missing_depth', 'missing_age', 'missing_quantity',
            'age_reversal', 'depth_reversal', 'zero_influx', 'single_sample'
        ])
        i = self.rng.randrange(len(rows))

        if anomaly == 'missing_depth':
            rows[i][3] = self.sentinel
        elif anomaly == 'missing_age':
            rows[i][4] = self.sentinel
        elif anomaly == 'missing_quantity':
            rows[i][5] = self.rng.choice([self.sentinel, ''])
        elif anomaly == 'age_reversal' and len(rows) > 1:
            j = max(1, i)
            rows[j][4], rows[j - 1][4] = rows[j - 1][4], rows[j][4]
        elif anomaly == 'depth_reversal' and len(rows) > 1:
            j = max(1, i)
            rows[j][3], rows[j - 1][3] = rows[j - 1][3], rows[j][3]
        elif anomaly == 'zero_influx':
            for row in rows:
                row[5] = 0.0
        elif anomaly == 'single_sample':
            del rows[1:]

        self._track_anomaly_type(stats, anomaly)

    def _track_anomaly_type(self, stats: Dict[str, Any], anomaly: str) -> None:
        stats['anomaly_types'][anomaly] = stats['anomaly_types'].get(anomaly, 0) + 1
