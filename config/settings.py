"""
Settings classes for the fleet coordination system.

Defines typed configuration classes for all system components.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional


ZONE_MATCHING_MODES = ('exact', 'preferred', 'any')
ROBOT_SELECTION_STRATEGIES = ('highest_battery', 'first_registered', 'nearest')


@dataclass
class CoordinatorSettings:
    """Settings for the coordination engine and scheduler."""
    min_battery_for_eligibility: int = 20
    zone_matching: str = "any"
    scheduling_interval: float = 5.0
    schedule_on_trigger: bool = True
    robot_selection: str = "highest_battery"
    charge_complete_level: int = 80
    auto_release_charging: bool = True
    low_battery_threshold: int = 30
    aging_interval_seconds: Optional[float] = None

    def __post_init__(self):
        if not 0 <= self.min_battery_for_eligibility <= 100:
            raise ValueError(f"min_battery_for_eligibility must be within 0-100, got {self.min_battery_for_eligibility}")
        if not 0 <= self.charge_complete_level <= 100:
            raise ValueError(f"charge_complete_level must be within 0-100, got {self.charge_complete_level}")
        if self.zone_matching not in ZONE_MATCHING_MODES:
            raise ValueError(f"zone_matching must be one of {ZONE_MATCHING_MODES}, got {self.zone_matching!r}")
        if self.robot_selection not in ROBOT_SELECTION_STRATEGIES:
            raise ValueError(f"robot_selection must be one of {ROBOT_SELECTION_STRATEGIES}, got {self.robot_selection!r}")
        if self.scheduling_interval <= 0:
            raise ValueError(f"scheduling_interval must be positive, got {self.scheduling_interval}")
        if self.aging_interval_seconds is not None and self.aging_interval_seconds <= 0:
            raise ValueError("aging_interval_seconds must be positive when set")


@dataclass
class StorageSettings:
    """Settings for the state store and system log buffer."""
    backend: str = "memory"
    max_log_entries: int = 10000

    def __post_init__(self):
        if self.backend != "memory":
            raise ValueError(f"Unsupported storage backend: {self.backend}")
        if self.max_log_entries <= 0:
            raise ValueError("max_log_entries must be positive")


@dataclass
class LoggingSettings:
    """Settings for logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024
    backup_count: int = 5
    console_output: bool = True


@dataclass
class SystemSettings:
    """Complete system settings container."""
    coordinator: CoordinatorSettings = field(default_factory=CoordinatorSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'SystemSettings':
        """Create SystemSettings from configuration dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            SystemSettings instance
        """
        config_dict = config_dict or {}
        return cls(
            coordinator=CoordinatorSettings(**(config_dict.get('coordinator') or {})),
            storage=StorageSettings(**(config_dict.get('storage') or {})),
            logging=LoggingSettings(**(config_dict.get('logging') or {}))
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert SystemSettings to dictionary.

        Returns:
            Configuration dictionary
        """
        return asdict(self)
