"""
Configuration loading helpers.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)


def resolve_env_vars(value: Any) -> Any:
    """Resolve environment variables in string values like ${VAR_NAME}.

    Dicts and lists are walked recursively so a whole config tree can be resolved at once.
    Unknown variables are left untouched.
    """
    if isinstance(value, dict):
        return {key: resolve_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str) and "${" in value:
        def replace_env_var(match):
            var_name = match.group(1)
            return os.getenv(var_name, match.group(0))

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, value)
    return value


def load_env_file(env_path: str = ".env"):
    """Load environment variables from .env file if it exists."""
    env_file = Path(env_path)
    if env_file.exists():
        with open(env_file, 'r') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ[key.strip()] = value.strip()


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """Load configuration from YAML file and resolve ${VAR} placeholders.

    Raises:
        FileNotFoundError: if the file does not exist
        yaml.YAMLError: if the file is not valid YAML
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}
    logger.debug(f"Loaded configuration from {config_path}")
    return resolve_env_vars(config)
