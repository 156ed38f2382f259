"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (``~/.novelcli/config.yaml``). Dotted keys such as
``cache.translation.ttl`` resolve into nested YAML mappings.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional, Dict

from dotenv import load_dotenv
import yaml

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".novelcli"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "NOVELCLI_"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to ``get_config``

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no .env found).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.info("Configuration loading process completed.")

def _coerce_env_value(value: str) -> Any:
    """Converts common string forms from the environment to Python types."""
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value

def _lookup_nested(data: Dict[str, Any], key: str) -> Any:
    """Resolves a dotted key through nested mappings; returns KeyError if absent."""
    if key in data:
        return data[key]
    node: Any = data
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node

def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (``KEY``, or ``NOVELCLI_KEY`` with dots as underscores)
    3. YAML config (flat or nested dotted keys)
    4. Default value

    Args:
        key: The configuration key
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_keys = [key.upper(), f"{ENV_PREFIX}{key.upper().replace('.', '_')}"]
    for env_key in env_keys:
        if env_key in os.environ:
            return _coerce_env_value(os.environ[env_key])

    try:
        return _lookup_nested(_config, key)
    except KeyError:
        pass

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    try:
        cwd = Path.cwd()
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
        return None
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None

# --- Convenience Functions ---

def get_openai_api_key() -> Optional[str]:
    """Convenience function to get the OpenAI API key."""
    key = get_config('OPENAI_API_KEY') or get_config('openai.api_key')
    return str(key) if key is not None else None

def get_deepseek_api_key() -> Optional[str]:
    """Convenience function to get the DeepSeek API key."""
    key = get_config('DEEPSEEK_API_KEY') or get_config('deepseek.api_key')
    return str(key) if key is not None else None

def get_groq_api_key() -> Optional[str]:
    """Convenience function to get the Groq API key."""
    key = get_config('GROQ_API_KEY') or get_config('groq.api_key')
    return str(key) if key is not None else None

def get_translator_model(provider: str) -> Optional[str]:
    """Gets the configured model for a translation provider."""
    model = get_config(f'translation.{provider}.model')
    return str(model) if model is not None else None

def get_target_language() -> str:
    """Language chapters are translated into."""
    return str(get_config('translation.target_language', 'Polish'))

def set_config(key: str, value: Any) -> None:
    """Sets a configuration value by key for the current process.

    Args:
        key: Configuration key (e.g., 'logging.level')
        value: Value to set
    """
    logger.debug(f"Setting config: {key} = {value}, type: {type(value)}")
    _config[key] = value

    env_var = f"{ENV_PREFIX}{key.upper().replace('.', '_')}"
    os.environ[env_var] = str(value)
    logger.debug(f"Config set: {key}={value}, environment variable: {env_var}")

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
