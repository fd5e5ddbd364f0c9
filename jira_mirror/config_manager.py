"""
Configuration Manager Module
Handles loading and accessing application configuration from YAML files and environment variables.
"""

import os
import re
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv


class ConfigManager:
    """Manages application configuration from YAML files and environment variables."""

    _instance = None
    _config: Dict = None

    def __new__(cls):
        """Singleton pattern for configuration."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize configuration if not already loaded."""
        if self._config is None:
            self._load_configuration()

    def _load_configuration(self) -> None:
        """Load all configuration files."""
        # Load environment variables from .env file
        load_dotenv()

        self._config_dir = self._find_config_dir()

        if self._config_dir is None:
            # Run on code defaults and environment variables only
            self._config = {}
            return

        config_path = self._config_dir / 'config.yaml'
        self._config = self._load_yaml_with_env(config_path)

    def _find_config_dir(self) -> Optional[Path]:
        """Find the configuration directory."""
        # Check for CONFIG_DIR environment variable
        env_config_dir = os.getenv('CONFIG_DIR')
        if env_config_dir:
            return Path(env_config_dir)

        # Default locations to check
        possible_paths = [
            Path(__file__).parent.parent / 'config',  # Project root
            Path.cwd() / 'config',  # Current working directory
            Path('/app/config'),  # Docker container
        ]

        for path in possible_paths:
            if path.exists():
                return path

        return None

    def _load_yaml_with_env(self, file_path: Path) -> Dict:
        """
        Load YAML file with environment variable substitution.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
        """
        if not file_path.exists():
            return {}

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        content = self._substitute_env_vars(content)

        return yaml.safe_load(content) or {}

    def _substitute_env_vars(self, content: str) -> str:
        """
        Substitute environment variables in string.

        Supports:
        - ${VAR_NAME} - Required variable
        - ${VAR_NAME:-default} - Variable with default value
        """
        pattern = r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}'

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2)

            value = os.getenv(var_name)
            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                return match.group(0)  # Return original if not found

        return re.sub(pattern, replacer, content)

    # ========================================
    # Configuration Getters
    # ========================================

    def get_app_config(self) -> Dict:
        """Get general application configuration."""
        return self._config.get('app') or {}

    def get_environment(self) -> str:
        """Deployment environment name, e.g. 'development' or 'production'."""
        return str(
            self.get_app_config().get('environment')
            or os.getenv('APP_ENV')
            or 'development'
        ).lower()

    def is_production(self) -> bool:
        return self.get_environment() == 'production'

    def get_jira_config(self) -> Dict:
        """Get Jira API configuration."""
        return self._config.get('jira') or {}

    def get_oauth_config(self) -> Dict:
        """Get Atlassian OAuth 2.0 (3LO) configuration."""
        return self._config.get('oauth') or {}

    def get_database_config(self) -> Dict:
        """Get database configuration."""
        return self._config.get('database') or {}

    def get_import_config(self) -> Dict:
        """Get import orchestration configuration."""
        return self._config.get('import') or {}

    def get_logging_config(self) -> Dict:
        """Get logging configuration."""
        return self._config.get('logging') or {}

