"""
Configuration Management System

Handles coordinator, storage and logging settings for the fleet coordination system.
"""

from .config_manager import ConfigManager
from .settings import (
    CoordinatorSettings,
    StorageSettings,
    LoggingSettings,
    SystemSettings
)

__all__ = [
    'ConfigManager',
    'CoordinatorSettings',
    'StorageSettings',
    'LoggingSettings',
    'SystemSettings'
]
