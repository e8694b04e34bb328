"""Simple YAML configuration loader for whisperqueue."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "storage": {
        "data_directory": "data",
        "queue_file": "tasks.json",
        "catalog_file": "recordings.json",
        "recordings_directory": "recordings",
    },
    "transcription": {
        "model": "tiny",
        "language": None,
    },
    "local": {
        "models_directory": "models",
        "device": "cpu",
        "compute_type": "int8",
        "beam_size": 5,
    },
    "remote": {
        "base_url": None,
        "api_key": None,
        "user_id": None,
        "chunk_size": 5 * 1024 * 1024,
        "poll_interval": 3.0,
        "timeout": 60.0,
    },
    "background": {
        "grant_seconds": None,
        "continuation_delay": 60.0,
        "auto_resume_paused": False,
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/whisperqueue.log",
        "console_output": True,
    },
}

# Storage paths resolved against the data directory rather than the config file
DATA_RELATIVE_PATHS = ("storage.queue_file", "storage.catalog_file",
                       "storage.recordings_directory", "local.models_directory")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class WhisperQueueConfig:
    """whisperqueue configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults
                        are used with paths relative to the working directory.
        """
        self.config_file = Path(config_path) if config_path else None

        if self.config_file is not None and not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load YAML configuration file and merge it over the defaults."""
        if self.config_file is None:
            config = copy.deepcopy(DEFAULT_CONFIG)
            self._resolve_paths(config, Path.cwd())
            return config

        logger.info(f"Loading configuration from: {self.config_file}")
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _merge(DEFAULT_CONFIG, loaded)
        self._resolve_paths(config, self.config_file.parent)
        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any], config_dir: Path) -> None:
        """Resolve relative paths against the config file location and the data directory."""
        storage = config['storage']
        data_dir = storage['data_directory']
        if not os.path.isabs(data_dir):
            storage['data_directory'] = str(config_dir / data_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

        for key_path in DATA_RELATIVE_PATHS:
            section, key = key_path.split('.')
            value = config[section].get(key)
            if value and not os.path.isabs(value):
                config[section][key] = str(Path(storage['data_directory']) / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'remote.base_url').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return default if value is None else value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'background.grant_seconds')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_remote_base_url(self) -> str:
        """Get the remote service URL, raising ValueError if remote execution is not configured."""
        base_url = self.get('remote.base_url')
        if not base_url:
            raise ValueError("remote.base_url is not configured")
        return base_url
