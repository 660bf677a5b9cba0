"""
Configuration loader for the Budget Ledger.

Loads settings from budget_ledger_config.yaml and provides typed access
to every configuration section. The file location can be overridden with
the BUDGET_LEDGER_CONFIG environment variable.
"""
import os
from pathlib import Path
from typing import Any, Optional
from functools import lru_cache

import yaml


# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "budget_ledger_config.yaml"
CONFIG_ENV_VAR = "BUDGET_LEDGER_CONFIG"

DEFAULT_EXPORT_COLUMNS = [
    "Name", "Original", "Actual", "Difference",
    "PaidBills", "ExternalBills", "PendingBills",
]


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class LedgerConfig:
    """
    Configuration manager for the Budget Ledger.

    Loads YAML configuration and provides typed access to all sections.
    A missing default file yields built-in defaults; a missing file that
    was asked for explicitly is an error.
    Use get_config() to obtain the singleton instance.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._explicit = config_path is not None
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            if self._explicit:
                raise ConfigurationError(f"Config file not found: {self._config_path}")
            self._config = {}
            return

        try:
            with open(self._config_path, 'r') as f:
                self._config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load()
        get_config.cache_clear()

    @property
    def config_path(self) -> Path:
        return self._config_path

    @property
    def version(self) -> str:
        """Configuration file version."""
        return self._config.get("version", "unknown")

    # =========================================================================
    # Database
    # =========================================================================

    @property
    def database(self) -> dict:
        return self._config.get("database", {})

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL; the BUDGET_LEDGER_DATABASE_URL variable wins."""
        return os.environ.get(
            "BUDGET_LEDGER_DATABASE_URL",
            self.database.get("url", "sqlite:///./budget_ledger.db"),
        )

    @property
    def database_echo(self) -> bool:
        return bool(self.database.get("echo", False))

    # =========================================================================
    # Budget Status
    # =========================================================================

    @property
    def warning_ratio(self) -> float:
        """Share of the available budget under which a node is in warning."""
        ratio = float(self._config.get("budget_status", {}).get("warning_ratio", 0.10))
        if not 0 <= ratio <= 1:
            raise ConfigurationError(f"budget_status.warning_ratio must be in [0, 1], got {ratio}")
        return ratio

    # =========================================================================
    # Orphans / Concurrency / Bills
    # =========================================================================

    @property
    def unassigned_structure_name(self) -> str:
        return self._config.get("orphans", {}).get(
            "unassigned_structure_name", "Unassigned Elements"
        )

    @property
    def max_attempts(self) -> int:
        """Attempts for an optimistic read-modify-write cycle."""
        attempts = int(self._config.get("concurrency", {}).get("max_attempts", 3))
        if attempts < 1:
            raise ConfigurationError("concurrency.max_attempts must be at least 1")
        return attempts

    @property
    def bills(self) -> dict:
        return self._config.get("bills", {})

    @property
    def bill_number_separator(self) -> str:
        return self.bills.get("number_separator", "-B-")

    @property
    def bill_number_padding(self) -> int:
        return int(self.bills.get("number_padding", 3))

    @property
    def fallback_project_code(self) -> str:
        return self.bills.get("fallback_project_code", "P0000")

    # =========================================================================
    # Summary cache
    # =========================================================================

    @property
    def summary(self) -> dict:
        return self._config.get("summary", {})

    @property
    def staleness_minutes(self) -> int:
        """Age after which a cached project summary is reported stale."""
        return int(self.summary.get("staleness_minutes", 15))

    @property
    def refresh_interval_minutes(self) -> int:
        return int(self.summary.get("refresh_interval_minutes", 5))

    @property
    def overdue_check_hour(self) -> int:
        return int(self.summary.get("overdue_check_hour", 1))

    # =========================================================================
    # Export / Logging
    # =========================================================================

    @property
    def export_columns(self) -> list[str]:
        return self._config.get("export", {}).get("columns", list(DEFAULT_EXPORT_COLUMNS))

    @property
    def log_level(self) -> str:
        return self._config.get("logging", {}).get("level", "INFO")

    @property
    def log_format(self) -> str:
        return self._config.get("logging", {}).get(
            "format", '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level config value by key."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        return key in self._config


@lru_cache(maxsize=1)
def get_config(config_path: Optional[str] = None) -> LedgerConfig:
    """
    Get the singleton configuration instance.

    Args:
        config_path: Optional path to config file. Only used on first call.
            Falls back to the BUDGET_LEDGER_CONFIG environment variable.

    Returns:
        LedgerConfig singleton instance
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    path = Path(config_path) if config_path else None
    return LedgerConfig(path)


def reload_config() -> LedgerConfig:
    """Reload configuration from disk and return new instance."""
    get_config.cache_clear()
    return get_config()
