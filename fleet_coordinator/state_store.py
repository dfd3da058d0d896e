"""
State store and commit path.

Every mutation of robots, tasks, paths and detections is expressed as a
ChangeSet. The StateCommitter writes it to the storage collaborator first and
installs the new records in memory only when storage accepted the whole set.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.data_models import Robot, Task, NavigationPath, Detection, TaskStatus
from core.errors import PersistenceError
from core.interfaces import ChangeSet, IStateStore


logger = logging.getLogger("fleet_coordinator.state_store")


class InMemoryStateStore(IStateStore):
    """Write-through store holding deep copies of every committed record."""

    def __init__(self):
        self._robots: Dict[str, Robot] = {}
        self._tasks: Dict[str, Task] = {}
        self._paths: Dict[str, NavigationPath] = {}
        self._detections: Dict[str, Detection] = {}
        self._lock = threading.Lock()

    def apply(self, changes: ChangeSet) -> None:
        with self._lock:
            for robot in changes.robots:
                self._robots[robot.robot_id] = robot.model_copy(deep=True)
            for task in changes.tasks:
                self._tasks[task.task_id] = task.model_copy(deep=True)
            for path in changes.paths:
                self._paths[path.path_id] = path.model_copy(deep=True)
            for detection in changes.detections:
                self._detections[detection.detection_id] = detection

    def get_robot(self, robot_id: str) -> Optional[Robot]:
        with self._lock:
            robot = self._robots.get(robot_id)
            return robot.model_copy(deep=True) if robot else None

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def list_pending_tasks(self) -> List[Task]:
        with self._lock:
            pending = [t for t in self._tasks.values() if t.status == TaskStatus.PENDING]
        pending.sort(key=lambda t: (-t.priority, t.created_at))
        return [t.model_copy(deep=True) for t in pending]

    def list_paths_by_robot(self, robot_id: str) -> List[NavigationPath]:
        with self._lock:
            paths = [p for p in self._paths.values() if p.robot_id == robot_id]
        paths.sort(key=lambda p: p.created_at, reverse=True)
        return [p.model_copy(deep=True) for p in paths]

    def list_detections_by_robot(self, robot_id: str) -> List[Detection]:
        with self._lock:
            detections = [d for d in self._detections.values() if d.robot_id == robot_id]
        detections.sort(key=lambda d: d.detection_timestamp, reverse=True)
        return detections


class StateCommitter:
    """
    Applies change sets atomically across the owning components.

    Components register an installer per record kind; the committer calls
    them only after the store accepted the change set, so a storage failure
    leaves in-memory state exactly as it was.
    """

    def __init__(self, store: Optional[IStateStore] = None, lock: Optional[threading.RLock] = None):
        self.store = store or InMemoryStateStore()
        self.lock = lock or threading.RLock()
        self._installers: Dict[str, Callable[[Any], Optional[Any]]] = {}
        self._listeners: List[Callable[[List[Tuple[str, Optional[Any], Any]]], None]] = []

    def register_installer(self, kind: str, installer: Callable[[Any], Optional[Any]]) -> None:
        """Register the callable that installs a record and returns the one it replaced."""
        self._installers[kind] = installer

    def add_listener(self, listener: Callable[[List[Tuple[str, Optional[Any], Any]]], None]) -> None:
        """Receive (kind, previous, current) tuples after every successful commit."""
        self._listeners.append(listener)

    def commit(self, changes: ChangeSet) -> None:
        """
        Persist and install a change set.

        Raises:
            PersistenceError: if the store rejected the change set
        """
        if changes.is_empty():
            return

        with self.lock:
            try:
                self.store.apply(changes)
            except PersistenceError:
                raise
            except Exception as e:
                logger.error(f"State store rejected change set: {e}")
                raise PersistenceError(f"State store rejected change set: {e}") from e

            # Paths go in before tasks so a task never points at an unrecorded path outcome
            applied: List[Tuple[str, Optional[Any], Any]] = []
            for kind, records in (('robot', changes.robots), ('path', changes.paths),
                                  ('task', changes.tasks), ('detection', changes.detections)):
                if not records:
                    continue
                installer = self._installers.get(kind)
                if installer is None:
                    raise KeyError(f"No installer registered for {kind} records")
                for record in records:
                    applied.append((kind, installer(record), record))

            for listener in self._listeners:
                try:
                    listener(applied)
                except Exception as e:
                    logger.error(f"Commit listener failed: {e}")
