"""
Core Interfaces, Models and Errors

Defines the records, error taxonomy and abstract collaborators used across all components.
"""

from .interfaces import (
    ChangeSet,
    IStateStore,
    ISystemLogSink
)
from .data_models import (
    RobotStatus,
    TaskStatus,
    PathStatus,
    LogLevel,
    Robot,
    Task,
    NavigationPath,
    Waypoint,
    Detection,
    DetectedObject,
    SystemLogEntry,
    EligibilityCriteria
)
from .errors import (
    FleetCoordinationError,
    NotFoundError,
    InvalidTransitionError,
    FleetValidationError,
    ConflictError,
    AlreadyTerminalError,
    PersistenceError
)
from .base_component import BaseComponent, ComponentState

__all__ = [
    'ChangeSet',
    'IStateStore',
    'ISystemLogSink',
    'RobotStatus',
    'TaskStatus',
    'PathStatus',
    'LogLevel',
    'Robot',
    'Task',
    'NavigationPath',
    'Waypoint',
    'Detection',
    'DetectedObject',
    'SystemLogEntry',
    'EligibilityCriteria',
    'FleetCoordinationError',
    'NotFoundError',
    'InvalidTransitionError',
    'FleetValidationError',
    'ConflictError',
    'AlreadyTerminalError',
    'PersistenceError',
    'BaseComponent',
    'ComponentState'
]
