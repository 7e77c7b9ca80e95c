"""Configuration manager for secrets kept outside config.yaml."""
import json
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

from ..utils.exceptions import ConfigError


ENV_OVERRIDES = {
    "gemini_api_key": "GEMINI_API_KEY",
}


@dataclass
class Config:
    """Runtime secrets and per-installation overrides."""
    gemini_api_key: str = ""
    default_customer_id: str = "default"


class ConfigManager:
    """Loads and saves config.json under the data directory, with environment overrides."""

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(os.getenv("STATEMENTFLOW_HOME") or Path.home() / ".statementflow")
        self.config_dir = Path(config_dir).expanduser()
        self.config_file = self.config_dir / "config.json"

    def load_config(self) -> Config:
        """
        Load configuration from config.json and apply environment overrides.

        Returns:
            Config instance (defaults when the file does not exist)

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        data = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Failed to load configuration: {e}")

        known = {f.name for f in fields(Config)}
        config = Config(**{k: v for k, v in data.items() if k in known})

        for attr, env_name in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                setattr(config, attr, value)
        return config

    def save_config(self, config: Config) -> None:
        """Save configuration as JSON."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(asdict(config), f, indent=2)
        except OSError as e:
            raise ConfigError(f"Failed to save configuration: {e}")

    def validate_config(self, config: Config, llm_required: bool = True) -> tuple[bool, str]:
        """Validate configuration values."""
        if llm_required and not config.gemini_api_key:
            return False, "Gemini API key is required (set GEMINI_API_KEY or disable llm in config.yaml)"

        if not config.default_customer_id:
            return False, "Default customer id cannot be empty"

        return True, "Configuration is valid"
