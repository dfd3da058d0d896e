"""
Configuration manager for the fleet coordination system.

Settings come from a YAML or JSON file in the config directory, with
FLEET_* environment variables layered on top. A missing file is replaced by
one holding the defaults.
"""

import os
import json
import logging
import logging.handlers
from typing import Dict, Any, Optional, Callable, Tuple
from pathlib import Path

import yaml

from .settings import SystemSettings


logger = logging.getLogger("fleet_coordinator.config")

YAML_SUFFIXES = ('.yaml', '.yml')

# variable -> (section, key, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    'FLEET_MIN_BATTERY': ('coordinator', 'min_battery_for_eligibility', int),
    'FLEET_ZONE_MATCHING': ('coordinator', 'zone_matching', str.lower),
    'FLEET_SCHEDULING_INTERVAL': ('coordinator', 'scheduling_interval', float),
    'FLEET_LOG_LEVEL': ('logging', 'level', str.upper),
}


def _read_file(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    with open(path, 'r') as f:
        if suffix in YAML_SUFFIXES:
            return yaml.safe_load(f) or {}
        if suffix == '.json':
            return json.load(f)
    raise ValueError(f"Unsupported config file format: {path.suffix}")


def _write_file(path: Path, data: Dict[str, Any]) -> None:
    with open(path, 'w') as f:
        if path.suffix.lower() in YAML_SUFFIXES:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(data, f, indent=2)


class ConfigManager:
    """Loads, edits and validates the coordinator configuration."""

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config_data: Dict[str, Any] = {}
        self.system_settings: Optional[SystemSettings] = None

    def load_config(self, config_file: str = "system_config.yaml") -> bool:
        """Read a config file, apply env overrides and build SystemSettings.

        Args:
            config_file: File name inside the config directory

        Returns:
            False when the file is unreadable or holds invalid values
        """
        path = self.config_dir / config_file
        if not path.exists():
            logger.warning(f"No configuration at {path}, writing defaults")
            path.parent.mkdir(parents=True, exist_ok=True)
            _write_file(path, SystemSettings().to_dict())

        try:
            self.config_data = _read_file(path)
            self._apply_env_overrides()
            self.system_settings = SystemSettings.from_dict(self.config_data)
        except (ValueError, TypeError, yaml.YAMLError) as e:
            logger.error(f"Could not load {path}: {e}")
            return False

        logger.info(f"Loaded configuration from {path}")
        return True

    def _apply_env_overrides(self) -> None:
        for variable, (section, key, parse) in ENV_OVERRIDES.items():
            raw = os.getenv(variable)
            if raw:
                self.config_data.setdefault(section, {})[key] = parse(raw)

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as 'coordinator.zone_matching'."""
        node: Any = self.config_data
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set_setting(self, key: str, value: Any) -> None:
        """Set a dotted key, creating intermediate sections."""
        *sections, leaf = key.split('.')
        node = self.config_data
        for part in sections:
            node = node.setdefault(part, {})
        node[leaf] = value

    def save_config(self, config_file: str = "system_config.yaml") -> bool:
        path = self.config_dir / config_file
        try:
            _write_file(path, self.config_data)
        except OSError as e:
            logger.error(f"Could not write {path}: {e}")
            return False
        return True

    def get_coordinator_config(self) -> Dict[str, Any]:
        return self.config_data.get('coordinator', {})

    def get_storage_config(self) -> Dict[str, Any]:
        return self.config_data.get('storage', {})

    def validate_config(self) -> bool:
        """Rebuild settings from the current data and check cross-field rules."""
        try:
            settings = SystemSettings.from_dict(self.config_data)
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid configuration: {e}")
            return False

        coordinator = settings.coordinator
        if coordinator.charge_complete_level <= coordinator.min_battery_for_eligibility:
            logger.error("charge_complete_level must be above min_battery_for_eligibility")
            return False
        if not isinstance(logging.getLevelName(settings.logging.level.upper()), int):
            logger.error(f"Unknown log level {settings.logging.level!r}")
            return False

        self.system_settings = settings
        return True

    def configure_logging(self) -> None:
        """Attach console and rotating file handlers to the root logger."""
        settings = (self.system_settings or SystemSettings()).logging
        formatter = logging.Formatter(settings.format)
        handlers = []
        if settings.console_output:
            handlers.append(logging.StreamHandler())
        if settings.file:
            handlers.append(logging.handlers.RotatingFileHandler(
                settings.file, maxBytes=settings.max_file_size, backupCount=settings.backup_count
            ))

        root = logging.getLogger()
        root.setLevel(settings.level.upper())
        for handler in handlers:
            handler.setFormatter(formatter)
            root.addHandler(handler)
