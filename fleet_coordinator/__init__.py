"""
Fleet coordination components.

Robot registry, task scheduler, navigation path tracker, detection ingest
and the coordination engine tying them together.
"""

from .robot_registry import RobotRegistry, ROBOT_TRANSITIONS
from .navigation_tracker import NavigationPathTracker, PATH_TRANSITIONS
from .task_scheduler import TaskScheduler, TaskQueue, TaskPriority, QueuedTask, TASK_TRANSITIONS
from .detection_ingest import DetectionIngest
from .state_store import InMemoryStateStore, StateCommitter
from .system_log import SystemLog, InMemoryLogSink
from .coordination_engine import CoordinationEngine, CoordinationEvent, CoordinationEventType
from .seed import load_seed_fleet

__all__ = [
    'RobotRegistry', 'ROBOT_TRANSITIONS',
    'NavigationPathTracker', 'PATH_TRANSITIONS',
    'TaskScheduler', 'TaskQueue', 'TaskPriority', 'QueuedTask', 'TASK_TRANSITIONS',
    'DetectionIngest',
    'InMemoryStateStore', 'StateCommitter',
    'SystemLog', 'InMemoryLogSink',
    'CoordinationEngine', 'CoordinationEvent', 'CoordinationEventType',
    'load_seed_fleet',
]
