"""Application settings loader from YAML configuration."""
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass

from ..utils.exceptions import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent.parent / "config.yaml"


@dataclass
class AppSettings:
    """Application-wide settings loaded from config.yaml."""

    # App info
    app_name: str = "StatementFlow"
    app_version: str = "1.0.0"

    # Logging
    log_level: str = "INFO"

    # Processing
    max_chunk_chars: int = 12000
    max_concurrency: int = 1
    time_budget_seconds: float = 45.0
    llm_failure_budget: int = 3
    default_currency: str = "EUR"

    # LLM
    llm_enabled: bool = True
    llm_model_name: str = "gemini-2.5-flash"
    llm_timeout_seconds: float = 30.0
    llm_temperature: float = 0.0
    llm_max_output_tokens: int = 8192
    llm_max_retries: int = 3
    llm_initial_delay_seconds: float = 1.0
    llm_backoff_factor: float = 2.0

    # Vision transcription for scanned PDFs
    vision_enabled: bool = False
    vision_model_name: str = "gemini-2.5-flash"

    # Quota
    quota_daily_limit: int = 500

    # Installments
    installments_require_total_count: bool = True
    installments_amount_tolerance: str = "0.05"

    # Categories
    category_fuzzy_threshold: int = 85

    # Paths
    data_dir: str = "~/.statementflow"
    logs_dir: str = "logs"
    database_file: str = "statementflow.db"
    ledger_dir: str = "ledger"

    @property
    def data_path(self) -> Path:
        """Resolved data directory, honouring STATEMENTFLOW_HOME."""
        home = os.getenv("STATEMENTFLOW_HOME") or self.data_dir
        return Path(home).expanduser()

    @property
    def logs_path(self) -> Path:
        return self.data_path / self.logs_dir

    @property
    def database_path(self) -> Path:
        return self.data_path / self.database_file

    @property
    def ledger_path(self) -> Path:
        return self.data_path / self.ledger_dir

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "AppSettings":
        """
        Load settings from YAML file.

        Args:
            config_path: Explicit YAML path. When omitted, config.yaml in the
                project root is used if present, otherwise defaults apply.

        Returns:
            AppSettings instance

        Raises:
            ConfigError: If an explicit path is missing or the YAML is invalid
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH
            if not config_path.exists():
                return cls()
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid configuration file {config_path}: {e}")

        if not isinstance(config, dict):
            raise ConfigError(f"Configuration root must be a mapping: {config_path}")

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "AppSettings":
        """Build settings from the nested YAML structure, keeping defaults for missing keys."""
        defaults = cls()

        def section(name: str) -> Dict[str, Any]:
            value = config.get(name) or {}
            if not isinstance(value, dict):
                raise ConfigError(f"Configuration section '{name}' must be a mapping")
            return value

        app = section("app")
        logging_cfg = section("logging")
        processing = section("processing")
        llm = section("llm")
        vision = section("vision")
        quota = section("quota")
        installments = section("installments")
        categories = section("categories")
        paths = section("paths")

        try:
            return cls(
                app_name=app.get("name", defaults.app_name),
                app_version=str(app.get("version", defaults.app_version)),
                log_level=logging_cfg.get("level", defaults.log_level),
                max_chunk_chars=int(processing.get("max_chunk_chars", defaults.max_chunk_chars)),
                max_concurrency=int(processing.get("max_concurrency", defaults.max_concurrency)),
                time_budget_seconds=float(processing.get("time_budget_seconds", defaults.time_budget_seconds)),
                llm_failure_budget=int(processing.get("llm_failure_budget", defaults.llm_failure_budget)),
                default_currency=processing.get("default_currency", defaults.default_currency),
                llm_enabled=bool(llm.get("enabled", defaults.llm_enabled)),
                llm_model_name=llm.get("model_name", defaults.llm_model_name),
                llm_timeout_seconds=float(llm.get("timeout_seconds", defaults.llm_timeout_seconds)),
                llm_temperature=float(llm.get("temperature", defaults.llm_temperature)),
                llm_max_output_tokens=int(llm.get("max_output_tokens", defaults.llm_max_output_tokens)),
                llm_max_retries=int(llm.get("max_retries", defaults.llm_max_retries)),
                llm_initial_delay_seconds=float(llm.get("initial_delay_seconds", defaults.llm_initial_delay_seconds)),
                llm_backoff_factor=float(llm.get("backoff_factor", defaults.llm_backoff_factor)),
                vision_enabled=bool(vision.get("enabled", defaults.vision_enabled)),
                vision_model_name=vision.get("model_name", defaults.vision_model_name),
                quota_daily_limit=int(quota.get("daily_limit", defaults.quota_daily_limit)),
                installments_require_total_count=bool(
                    installments.get("require_total_count", defaults.installments_require_total_count)
                ),
                installments_amount_tolerance=str(
                    installments.get("amount_tolerance", defaults.installments_amount_tolerance)
                ),
                category_fuzzy_threshold=int(categories.get("fuzzy_threshold", defaults.category_fuzzy_threshold)),
                data_dir=paths.get("data_dir", defaults.data_dir),
                logs_dir=paths.get("logs_dir", defaults.logs_dir),
                database_file=paths.get("database_file", defaults.database_file),
                ledger_dir=paths.get("ledger_dir", defaults.ledger_dir),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

    def validate(self) -> None:
        """Raise ConfigError for settings the pipeline cannot run with."""
        if self.max_chunk_chars < 1:
            raise ConfigError("processing.max_chunk_chars must be positive")
        if self.max_concurrency < 1:
            raise ConfigError("processing.max_concurrency must be at least 1")
        if self.time_budget_seconds <= 0:
            raise ConfigError("processing.time_budget_seconds must be positive")
        if self.llm_failure_budget < 0:
            raise ConfigError("processing.llm_failure_budget cannot be negative")
        if not 0 <= self.category_fuzzy_threshold <= 100:
            raise ConfigError("categories.fuzzy_threshold must be between 0 and 100")

