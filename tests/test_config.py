"""
Tests for configuration management.

Tests the Config class and configuration loading from files and environment variables.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from tasktrack.config import Config
from tasktrack.database import DEFAULT_DB_URL


@pytest.fixture
def config_file(tmp_path):
    """Write a settings.ini with every section populated."""
    path = tmp_path / "settings.ini"
    path.write_text("""
[database]
url = sqlite+aiosqlite:///tmp/tasktrack-test.db

[positioning]
spacing = 1000
min_members = 3
middle_fraction = 0.8

[worker]
poll_interval = 1.5
batch_size = 7
max_attempts = 2
retry_delay = 10
""")
    return path


@pytest.fixture
def clean_env():
    """Remove TASKTRACK_* variables for the duration of a test."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("TASKTRACK_")}
    with patch.dict(os.environ, env, clear=True):
        yield


class TestConfig:
    """Tests for Config class."""

    def test_default_config_path(self):
        """Test default config path is config/settings.ini at the project root."""
        config = Config()
        assert config.config_path.parts[-2:] == ("config", "settings.ini")

    def test_missing_config_file_uses_defaults(self, tmp_path, clean_env):
        """Test that a missing config file falls back to defaults."""
        config = Config(tmp_path / "nonexistent.ini")

        assert config.get_database_config()['url'] == DEFAULT_DB_URL
        assert config.get_worker_config() == {
            'poll_interval': 5.0,
            'batch_size': 20,
            'max_attempts': 5,
            'retry_delay': 30.0,
        }
        assert config.get_positioning_policy().spacing == 10_000

    def test_config_file_parsing(self, config_file, clean_env):
        """Test parsing a valid config file."""
        config = Config(config_file)

        assert config.get_database_config()['url'] == "sqlite+aiosqlite:///tmp/tasktrack-test.db"

        worker = config.get_worker_config()
        assert worker['poll_interval'] == 1.5
        assert worker['batch_size'] == 7
        assert worker['max_attempts'] == 2
        assert worker['retry_delay'] == 10.0

        policy = config.get_positioning_policy()
        assert policy.spacing == 1000
        assert policy.min_members == 3
        assert policy.middle_fraction == 0.8
        assert policy.min_gap == 2

    def test_environment_variable_override(self, config_file, clean_env):
        """Test environment variables override the config file."""
        with patch.dict(os.environ, {
            'TASKTRACK_DATABASE_URL': 'sqlite+aiosqlite:///:memory:',
            'TASKTRACK_WORKER_BATCH_SIZE': '50',
            'TASKTRACK_POSITIONING_SPACING': '250',
            'TASKTRACK_POSITIONING_CEILING': '900000',
        }):
            config = Config(config_file)

            assert config.get_database_config()['url'] == 'sqlite+aiosqlite:///:memory:'
            assert config.get_worker_config()['batch_size'] == 50

            policy = config.get_positioning_policy()
            assert policy.spacing == 250
            assert policy.ceiling == 900000
            assert policy.min_members == 3

    def test_invalid_positioning_values_raise(self, tmp_path, clean_env):
        """Test an invalid positioning section fails validation."""
        path = tmp_path / "settings.ini"
        path.write_text("[positioning]\nmin_members = 1\n")

        with pytest.raises(ValidationError):
            Config(path).get_positioning_policy()

    def test_unreadable_config_falls_back(self, tmp_path, clean_env):
        """Test a malformed file is ignored."""
        path = tmp_path / "settings.ini"
        path.write_text("this is not ini content\n")

        config = Config(Path(path))
        assert config.get_worker_config()['batch_size'] == 20
