# ========================
# src/charcoal/__init__.py
# ========================

"""
Charcoal Pipeline Package

Core components of the charcoal record pipeline:
- records: shared value types (samples, flags, bin grid, binned records)
- ingestion: streaming CSV reading of the raw extract and site files
- cleaning: raw row parsing and missing-value handling
- derivation: sedimentation rate, concentration and influx per site
- transforms: value transforms applied before binning
- binning: aggregation onto an evenly spaced age grid
- storage: output management
- orchestrator: pipeline coordination
"""

from .records import BinGrid, QuantityType, Sample, SiteFlags
from .ingestion import CSVReader
from .cleaning import SampleParser
from .derivation import DerivationEngine
from .binning import BinningEngine
from .storage import DataSaver
from .orchestrator import CharcoalPipeline

__all__ = [
    'BinGrid',
    'QuantityType',
    'Sample',
    'SiteFlags',
    'CSVReader',
    'SampleParser',
    'DerivationEngine',
    'BinningEngine',
    'DataSaver',
    'CharcoalPipeline'
]

__version__ = "1.0.0"
