# ========================
# src/utils/config.py
# ========================

"""
Configuration Management

Centralized configuration for the charcoal pipeline with environment support.
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional

class Config:
    """
    Configuration class for the charcoal pipeline.
    Supports environment variables and default values.
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            config_dict (dict): Optional configuration overrides
        """
        # Input handling
        self.MISSING_SENTINEL = float(os.getenv('CHARCOAL_MISSING_SENTINEL', '-9999'))
        self.DEFAULT_CHUNK_SIZE = int(os.getenv('CHARCOAL_CHUNK_SIZE', '1000'))

        # File Paths
        self.DEFAULT_INPUT_FILE = os.getenv('CHARCOAL_INPUT_FILE', 'data/raw/charcoal_samples.csv')
        self.DEFAULT_SITE_LIST = os.getenv('CHARCOAL_SITE_LIST', 'data/raw/site_list.csv')
        self.DEFAULT_OUTPUT_DIR = os.getenv('CHARCOAL_OUTPUT_DIR', 'data/processed')

        # Binning grid
        self.BIN_START = float(os.getenv('CHARCOAL_BIN_START', '-60'))
        self.BIN_END = float(os.getenv('CHARCOAL_BIN_END', '22000'))
        self.BIN_STEP = float(os.getenv('CHARCOAL_BIN_STEP', '20'))

        # Transform applied to influx before binning
        self.TRANSFORM = os.getenv('CHARCOAL_TRANSFORM', 'zt')
        self.BASE_PERIOD_START = float(os.getenv('CHARCOAL_BASE_PERIOD_START', '200'))
        self.BASE_PERIOD_END = float(os.getenv('CHARCOAL_BASE_PERIOD_END', '2000'))

        # Concurrency
        self.MAX_WORKERS = int(os.getenv('CHARCOAL_MAX_WORKERS', '4'))

        # Synthetic data
        self.DEFAULT_SAMPLE_SITES = int(os.getenv('SAMPLE_SITES', '50'))

        # API server
        self.API_PORT = int(os.getenv('CHARCOAL_API_PORT', '8000'))

        # Logging Configuration
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

        # Override with provided config
        if config_dict:
            self._update_from_dict(config_dict)

    def _update_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Update configuration from dictionary."""
        for key, value in config_dict.items():
            if hasattr(self, key.upper()):
                setattr(self, key.upper(), value)

    @property
    def base_period(self):
        return (self.BASE_PERIOD_START, self.BASE_PERIOD_END)

    def get_data_paths(self) -> Dict[str, Path]:
        """Get all configured data paths as Path objects."""
        return {
            'input_file': Path(self.DEFAULT_INPUT_FILE),
            'site_list_file': Path(self.DEFAULT_SITE_LIST),
            'output_dir': Path(self.DEFAULT_OUTPUT_DIR),
            'raw_data_dir': Path(self.DEFAULT_INPUT_FILE).parent,
            'logs_dir': Path('logs')
        }

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        paths = self.get_data_paths()
        for path_name, path in paths.items():
            if path_name.endswith('_dir'):
                path.mkdir(parents=True, exist_ok=True)

    def validate_config(self) -> Dict[str, bool]:
        """
        Validate configuration values.

        Returns:
            dict: Validation results for each setting
        """
        validations = {}

        validations['chunk_size'] = self.DEFAULT_CHUNK_SIZE > 0
        validations['bin_step'] = self.BIN_STEP > 0
        validations['bin_range'] = self.BIN_END >= self.BIN_START
        validations['base_period'] = self.BASE_PERIOD_END >= self.BASE_PERIOD_START
        validations['max_workers'] = self.MAX_WORKERS > 0
        validations['sample_sites'] = self.DEFAULT_SAMPLE_SITES > 0
        validations['api_port'] = 1000 <= self.API_PORT <= 65535
        validations['transform'] = bool(self.TRANSFORM.strip())

        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        validations['log_level'] = self.LOG_LEVEL.upper() in valid_log_levels

        return validations

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            attr: getattr(self, attr)
            for attr in dir(self)
            if attr.isupper() and not callable(getattr(self, attr))
        }

    def save_to_file(self, file_path: str) -> None:
        """Save configuration to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

    @classmethod
    def load_from_file(cls, file_path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(file_path, 'r') as f:
            config_dict = json.load(f)
        return cls(config_dict)
