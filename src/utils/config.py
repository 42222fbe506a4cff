# ========================
# src/utils/config.py
# ========================

"""
Configuration Management

Centralized configuration for the ingestion pipeline with environment support.
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional

class Config:
    """
    Configuration class for the ingestion pipeline.
    Supports environment variables and default values.
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            config_dict (dict): Optional configuration overrides
        """
        # Batch Processing Configuration
        self.DEFAULT_BATCH_SIZE = int(os.getenv('PIPELINE_BATCH_SIZE', '1000'))
        self.MAX_BATCH_SIZE = int(os.getenv('PIPELINE_MAX_BATCH_SIZE', '5000'))
        self.CSV_DELIMITER = os.getenv('CSV_DELIMITER', ',')

        # Memory Pressure (threshold 0 disables memory pauses)
        self.MEMORY_THRESHOLD_MB = int(os.getenv('MEMORY_THRESHOLD_MB', '0'))
        self.MEMORY_COOLDOWN_SECONDS = float(os.getenv('MEMORY_COOLDOWN_SECONDS', '1.0'))

        # Cache Settings
        self.CACHE_BACKEND = os.getenv('CACHE_BACKEND', 'file')
        self.CACHE_DIR = os.getenv('CACHE_DIR', 'data/cache')
        self.CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'csv_cache_')
        self.CACHE_MAX_ENTRIES = int(os.getenv('CACHE_MAX_ENTRIES', '100'))
        self.CACHE_MAX_BYTES = int(os.getenv('CACHE_MAX_BYTES', str(50 * 1024 * 1024)))

        # File Paths
        self.DEFAULT_INPUT_FILE = os.getenv('PIPELINE_INPUT_FILE', 'data/raw/listings.csv')
        self.UPLOAD_DIR = os.getenv('UPLOAD_DIR', 'data/uploaded')

        # Validation Settings
        self.MAX_FILE_SIZE_MB = int(os.getenv('MAX_FILE_SIZE_MB', '100'))
        self.ERROR_SAMPLE_LIMIT = int(os.getenv('ERROR_SAMPLE_LIMIT', '5'))

        # Data Generation Settings
        self.DEFAULT_SAMPLE_ROWS = int(os.getenv('SAMPLE_ROWS', '10000'))

        # API Settings
        self.API_PORT = int(os.getenv('API_PORT', '8000'))

        # Logging Configuration
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
        self.LOG_BATCH_INTERVAL = int(os.getenv('LOG_BATCH_INTERVAL', '100'))

        # Override with provided config
        if config_dict:
            self._update_from_dict(config_dict)

    def _update_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Update configuration from dictionary."""
        for key, value in config_dict.items():
            if hasattr(self, key.upper()):
                setattr(self, key.upper(), value)

    def get_data_paths(self) -> Dict[str, Path]:
        """Get all configured data paths as Path objects."""
        return {
            'input_file': Path(self.DEFAULT_INPUT_FILE),
            'raw_data_dir': Path(self.DEFAULT_INPUT_FILE).parent,
            'cache_dir': Path(self.CACHE_DIR),
            'upload_dir': Path(self.UPLOAD_DIR),
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

        # Validate numeric ranges
        validations['batch_size'] = 0 < self.DEFAULT_BATCH_SIZE <= self.MAX_BATCH_SIZE
        validations['delimiter'] = len(self.CSV_DELIMITER) == 1
        validations['memory_threshold'] = self.MEMORY_THRESHOLD_MB >= 0
        validations['memory_cooldown'] = self.MEMORY_COOLDOWN_SECONDS >= 0
        validations['cache_backend'] = self.CACHE_BACKEND.lower() in ('file', 'memory')
        validations['cache_max_entries'] = self.CACHE_MAX_ENTRIES >= 0
        validations['cache_max_bytes'] = self.CACHE_MAX_BYTES >= 0
        validations['max_file_size'] = self.MAX_FILE_SIZE_MB > 0
        validations['error_sample_limit'] = self.ERROR_SAMPLE_LIMIT >= 0
        validations['sample_rows'] = self.DEFAULT_SAMPLE_ROWS > 0
        validations['api_port'] = 1000 <= self.API_PORT <= 65535

        # Validate log level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        validations['log_level'] = self.LOG_LEVEL.upper() in valid_log_levels

        return validations

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            attr: getattr(self, attr)
            for attr in dir(self)
            if not attr.startswith('_') and not callable(getattr(self, attr))
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

    def __str__(self) -> str:
        """String representation of configuration."""
        lines = ["Configuration Settings:"]
        config_dict = self.to_dict()
        for key, value in sorted(config_dict.items()):
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)
