"""
Configuration management for tasktrack.

Loads settings from settings.ini with environment variable overrides.
Provides centralized configuration for the database, the positioning
policy and the rebalance worker.
"""

import configparser
import os
from pathlib import Path
from typing import Optional, Dict, Any

from tasktrack.database import DEFAULT_DB_URL
from tasktrack.logging_config import get_logger
from tasktrack.policy import PositioningPolicy

logger = get_logger(__name__)

# Positioning keys and the type used to parse them
_POLICY_KEYS = {
    'spacing': int,
    'baseline_min': int,
    'baseline_max': int,
    'top_insert_offset': int,
    'top_insert_floor': int,
    'append_jitter': int,
    'middle_fraction': float,
    'min_gap': int,
    'min_members': int,
    'ceiling': int,
}


class Config:
    """Application configuration manager."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config file, defaults to config/settings.ini
        """
        self.config_path = config_path or self._default_config_path()
        self._config = configparser.ConfigParser()
        self._load()

    def _default_config_path(self) -> Path:
        """Get default config path."""
        project_root = Path(__file__).parent.parent
        return project_root / "config" / "settings.ini"

    def _load(self):
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                self._config.read(self.config_path)
                logger.info(f"Loaded configuration from {self.config_path}")
            except configparser.Error as e:
                logger.warning(f"Failed to read config file: {e}. Using defaults.")
        else:
            logger.debug(f"Config file not found at {self.config_path}. Using defaults.")

    def get_database_config(self) -> Dict[str, Any]:
        """
        Get database configuration with environment overrides.

        Environment variables take precedence over config file:
        - TASKTRACK_DATABASE_URL

        Returns:
            Dictionary with database configuration
        """
        config = {
            'url': os.getenv('TASKTRACK_DATABASE_URL') or
                   self._config.get('database', 'url', fallback=DEFAULT_DB_URL),
        }

        logger.debug(f"Database config: url={config['url']}")

        return config

    def get_positioning_policy(self) -> PositioningPolicy:
        """
        Get the positioning policy with environment overrides.

        Every field of PositioningPolicy can be set in the ``[positioning]``
        section or through TASKTRACK_POSITIONING_<FIELD>, e.g.
        TASKTRACK_POSITIONING_SPACING. Unset keys keep the policy defaults.

        Returns:
            Validated PositioningPolicy
        """
        values: Dict[str, Any] = {}
        for key, cast in _POLICY_KEYS.items():
            raw = (
                os.getenv(f'TASKTRACK_POSITIONING_{key.upper()}') or
                self._config.get('positioning', key, fallback=None)
            )
            if raw is not None:
                values[key] = cast(raw)

        policy = PositioningPolicy(**values)
        logger.debug(f"Positioning policy: spacing={policy.spacing}, "
                     f"min_gap={policy.min_gap}, min_members={policy.min_members}, "
                     f"ceiling={policy.ceiling}")
        return policy

    def get_worker_config(self) -> Dict[str, Any]:
        """
        Get rebalance worker configuration with environment overrides.

        Environment variables take precedence over config file:
        - TASKTRACK_WORKER_POLL_INTERVAL (seconds)
        - TASKTRACK_WORKER_BATCH_SIZE
        - TASKTRACK_WORKER_MAX_ATTEMPTS
        - TASKTRACK_WORKER_RETRY_DELAY (seconds, multiplied by attempt number)

        Returns:
            Dictionary with worker configuration
        """
        config = {
            'poll_interval': float(os.getenv('TASKTRACK_WORKER_POLL_INTERVAL') or
                                   self._config.get('worker', 'poll_interval', fallback='5')),
            'batch_size': int(os.getenv('TASKTRACK_WORKER_BATCH_SIZE') or
                              self._config.get('worker', 'batch_size', fallback='20')),
            'max_attempts': int(os.getenv('TASKTRACK_WORKER_MAX_ATTEMPTS') or
                                self._config.get('worker', 'max_attempts', fallback='5')),
            'retry_delay': float(os.getenv('TASKTRACK_WORKER_RETRY_DELAY') or
                                 self._config.get('worker', 'retry_delay', fallback='30')),
        }

        logger.debug(f"Worker config: poll_interval={config['poll_interval']}, "
                     f"batch_size={config['batch_size']}, "
                     f"max_attempts={config['max_attempts']}, "
                     f"retry_delay={config['retry_delay']}")

        return config
