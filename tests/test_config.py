"""
Tests for the configuration loader.
"""
import pytest
import tempfile
from pathlib import Path

from budget_ledger.config import (
    DEFAULT_EXPORT_COLUMNS,
    ConfigurationError,
    LedgerConfig,
    get_config,
)


def _write(content: str) -> Path:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(content)
        return Path(f.name)


class TestLedgerConfig:
    """Tests for LedgerConfig class."""

    def test_load_default_config(self):
        config = get_config()
        assert config.version == "1.0.0"
        assert config.warning_ratio == 0.10
        assert config.max_attempts == 3
        assert config.unassigned_structure_name == "Unassigned Elements"

    def test_default_export_columns(self):
        assert get_config().export_columns == DEFAULT_EXPORT_COLUMNS

    def test_custom_values(self):
        path = _write(
            "version: '2.0'\n"
            "budget_status:\n  warning_ratio: 0.25\n"
            "bills:\n  number_separator: '/INV/'\n  number_padding: 5\n"
            "summary:\n  staleness_minutes: 60\n"
        )
        config = LedgerConfig(path)
        assert config.version == "2.0"
        assert config.warning_ratio == 0.25
        assert config.bill_number_separator == "/INV/"
        assert config.bill_number_padding == 5
        assert config.staleness_minutes == 60
        # Untouched sections fall back to defaults
        assert config.max_attempts == 3
        assert config.fallback_project_code == "P0000"

    def test_empty_file_gives_defaults(self):
        config = LedgerConfig(_write(""))
        assert config.version == "unknown"
        assert config.refresh_interval_minutes == 5
        assert config.log_level == "INFO"

    def test_missing_explicit_file(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig(Path("/nonexistent/ledger.yaml"))

    def test_invalid_yaml(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig(_write("database: [unclosed"))

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig(_write("- just\n- a list\n"))

    def test_warning_ratio_out_of_range(self):
        config = LedgerConfig(_write("budget_status:\n  warning_ratio: 1.5\n"))
        with pytest.raises(ConfigurationError):
            config.warning_ratio

    def test_max_attempts_must_be_positive(self):
        config = LedgerConfig(_write("concurrency:\n  max_attempts: 0\n"))
        with pytest.raises(ConfigurationError):
            config.max_attempts

    def test_database_url_env_override(self, monkeypatch):
        config = LedgerConfig(_write("database:\n  url: sqlite:///file.db\n"))
        assert config.database_url == "sqlite:///file.db"
        monkeypatch.setenv("BUDGET_LEDGER_DATABASE_URL", "postgresql://ledger@db/ledger")
        assert config.database_url == "postgresql://ledger@db/ledger"

    def test_mapping_access(self):
        config = LedgerConfig(_write("orphans:\n  unassigned_structure_name: Loose\n"))
        assert "orphans" in config
        assert config["orphans"]["unassigned_structure_name"] == "Loose"
        assert config.get("missing", 42) == 42
        assert config.unassigned_structure_name == "Loose"
