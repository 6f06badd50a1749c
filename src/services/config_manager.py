import os
from pathlib import Path
from string import Template
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from src.models.config import SyncConfig
from src.utils.exceptions import ConfigurationError

logger = structlog.get_logger()

# Kept for callers that catch the historical name
ConfigValidationError = ConfigurationError


class ConfigManager:
    """Loads and validates the sync agent configuration"""

    def __init__(
        self,
        config_path: str = "config/sync_config.yaml",
        load_env: bool = True,
    ):
        self.config_path = Path(config_path)
        self.env_loaded = not load_env
        self._config: Optional[SyncConfig] = None

    def load_config(self) -> SyncConfig:
        """Load and validate configuration"""
        if self._config:
            return self._config

        # 1. Load environment
        if not self.env_loaded:
            load_dotenv()
            self.env_loaded = True

        # 2. Check file existence
        if not self.config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self.config_path}"
            )

        # 3. Read YAML
        try:
            raw_content = self.config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}")

        # 4. Substitute env vars
        try:
            # safe_substitute leaves unknown ${VAR} in place
            template = Template(raw_content)
            substituted_content = template.safe_substitute(os.environ)
            config_data = yaml.safe_load(substituted_content)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to parse YAML or substitute variables: {e}"
            )

        if not isinstance(config_data, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {self.config_path}"
            )

        # 5. Validate with Pydantic
        try:
            self._config = SyncConfig(**config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        logger.info(
            "config_loaded",
            path=str(self.config_path),
            enabled=self._config.agent.enabled,
            interval_seconds=self._config.agent.interval_seconds,
        )
        return self._config

    def get_state_path(self) -> Path:
        """State file location, with its parent directory created"""
        config = self.load_config()
        state_path = config.state.state_file
        state_path.parent.mkdir(parents=True, exist_ok=True)
        return state_path

    def get_output_path(self) -> Path:
        """Download root, created on demand"""
        config = self.load_config()
        output = config.agent.output_folder
        output.mkdir(parents=True, exist_ok=True)
        return output
