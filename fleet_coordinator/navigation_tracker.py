"""
Navigation Path Tracker.

Records planned, executing, completed and failed paths per robot. Terminal
outcomes of task-linked paths are handed to the scheduler so the owning task
moves in the same atomic unit.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from core.base_component import BaseComponent
from core.data_models import NavigationPath, PathStatus, Waypoint, LogLevel, Robot, Task
from core.errors import NotFoundError, InvalidTransitionError, AlreadyTerminalError, FleetValidationError
from core.interfaces import ChangeSet
from .robot_registry import RobotRegistry
from .state_store import StateCommitter
from .system_log import SystemLog


PATH_TRANSITIONS: Dict[PathStatus, frozenset] = {
    PathStatus.PLANNED: frozenset({PathStatus.EXECUTING, PathStatus.FAILED}),
    PathStatus.EXECUTING: frozenset({PathStatus.COMPLETED, PathStatus.FAILED}),
    PathStatus.COMPLETED: frozenset(),
    PathStatus.FAILED: frozenset(),
}

Coordinate = Tuple[float, float]
WaypointLike = Union[Waypoint, Dict[str, Any], Sequence[float]]


class NavigationPathTracker(BaseComponent):
    """Lifecycle owner of navigation paths."""

    def __init__(self, committer: StateCommitter, registry: RobotRegistry,
                 system_log: Optional[SystemLog] = None, config: Optional[Dict[str, Any]] = None):
        super().__init__("navigation_tracker", config or {})
        self._committer = committer
        self._lock = committer.lock
        self._registry = registry
        self._system_log = system_log or SystemLog()
        self._paths: Dict[str, NavigationPath] = {}
        self._outcome_handler: Optional[Callable[[NavigationPath, PathStatus], NavigationPath]] = None
        committer.register_installer('path', self._install)

    async def health_check(self) -> Dict[str, Any]:
        with self._lock:
            executing = sum(1 for p in self._paths.values() if p.path_status == PathStatus.EXECUTING)
            total = len(self._paths)
        return {
            'component': 'navigation_tracker',
            'status': 'healthy',
            'total_paths': total,
            'executing_paths': executing,
            'timestamp': datetime.now()
        }

    def set_outcome_handler(self, handler: Callable[[NavigationPath, PathStatus], NavigationPath]) -> None:
        """Route transitions of task-linked paths through the given handler."""
        self._outcome_handler = handler

    def create_for_task(self, robot_id: str, start: Coordinate, end: Coordinate,
                        waypoints: Optional[Iterable[WaypointLike]] = None,
                        task_id: Optional[str] = None) -> NavigationPath:
        """
        Record a new PLANNED path for a robot.

        Raises:
            NotFoundError: if the robot is not registered
            FleetValidationError: if coordinates are out of range
        """
        with self._lock:
            path = self.build_path(robot_id, start, end, waypoints, task_id)
            self._committer.commit(ChangeSet(paths=[path]))
        self.logger.info(f"Path {path.path_id} planned for robot {robot_id}")
        return path.model_copy(deep=True)

    def build_path(self, robot_id: str, start: Coordinate, end: Coordinate,
                   waypoints: Optional[Iterable[WaypointLike]] = None,
                   task_id: Optional[str] = None) -> NavigationPath:
        """Build a validated PLANNED path without committing it."""
        if not self._registry.has_robot(robot_id):
            raise NotFoundError("Robot", robot_id)

        try:
            return NavigationPath(
                robot_id=robot_id,
                task_id=task_id,
                start_lat=start[0],
                start_lng=start[1],
                end_lat=end[0],
                end_lng=end[1],
                waypoints=[self._to_waypoint(w) for w in (waypoints or [])]
            )
        except (ValidationError, TypeError, IndexError, KeyError) as e:
            raise FleetValidationError(f"Invalid path for robot {robot_id}: {e}") from e

    @staticmethod
    def _to_waypoint(value: WaypointLike) -> Waypoint:
        if isinstance(value, Waypoint):
            return value
        if isinstance(value, dict):
            return Waypoint(latitude=value.get('latitude', value.get('lat')),
                            longitude=value.get('longitude', value.get('lng')))
        return Waypoint(latitude=value[0], longitude=value[1])

    @staticmethod
    def endpoints_for(robot: Robot, task: Task) -> Tuple[Coordinate, Coordinate]:
        """
        Start at the robot's last known position, end at the task target.

        A missing endpoint falls back to the other one, then to the origin.
        """
        start = robot.position()
        end = task.target_position()
        start = start or end or (0.0, 0.0)
        end = end or start
        return start, end

    def advance(self, path_id: str, new_status: PathStatus) -> NavigationPath:
        """
        Move a path to a new status.

        Raises:
            NotFoundError: if the path does not exist
            AlreadyTerminalError: if the path is COMPLETED or FAILED
            InvalidTransitionError: if the move is not allowed
        """
        with self._lock:
            path = self.get_path(path_id)
            if path.task_id and self._outcome_handler is not None:
                return self._outcome_handler(path, new_status)
            updated = self.prepare_advance(path, new_status)
            self._committer.commit(ChangeSet(paths=[updated]))
        self.log_advance(path, updated)
        return updated.model_copy(deep=True)

    def prepare_advance(self, path: NavigationPath, new_status: PathStatus,
                        now: Optional[datetime] = None) -> NavigationPath:
        """Validate a path transition and build the resulting record."""
        try:
            new_status = PathStatus(new_status)
        except ValueError as e:
            raise FleetValidationError(f"Unknown path status: {new_status}") from e

        if path.is_terminal():
            raise AlreadyTerminalError("Path", path.path_id, path.path_status)
        if new_status not in PATH_TRANSITIONS[path.path_status]:
            raise InvalidTransitionError("Path", path.path_id, path.path_status, new_status)

        updates: Dict[str, Any] = {'path_status': new_status}
        if new_status in (PathStatus.COMPLETED, PathStatus.FAILED):
            updates['completed_at'] = now or datetime.now()
        return path.model_copy(update=updates)

    def prepare_finish(self, path: NavigationPath, outcome: PathStatus,
                       now: Optional[datetime] = None) -> NavigationPath:
        """
        Drive a path to a terminal outcome, passing through EXECUTING when
        a PLANNED path completes. Terminal paths are returned unchanged.
        """
        if path.is_terminal():
            return path
        if outcome == PathStatus.COMPLETED and path.path_status == PathStatus.PLANNED:
            path = self.prepare_advance(path, PathStatus.EXECUTING, now)
        return self.prepare_advance(path, outcome, now)

    def log_advance(self, before: NavigationPath, after: NavigationPath) -> None:
        if before.path_status == after.path_status:
            return
        level = LogLevel.WARNING if after.path_status == PathStatus.FAILED else LogLevel.INFO
        self._system_log.emit(level, self.component_name,
                              f"Path {after.path_id} {before.path_status.value} -> {after.path_status.value}",
                              robot_id=after.robot_id,
                              data={'path_id': after.path_id, 'task_id': after.task_id})

    def get_path(self, path_id: str) -> NavigationPath:
        """
        Get a copy of a path.

        Raises:
            NotFoundError: if the path does not exist
        """
        with self._lock:
            path = self._paths.get(path_id)
            if path is None:
                raise NotFoundError("Path", path_id)
            return path.model_copy(deep=True)

    def list_paths(self, robot_id: Optional[str] = None, task_id: Optional[str] = None,
                   status: Optional[PathStatus] = None) -> List[NavigationPath]:
        """List paths newest first, optionally filtered by robot, task or status."""
        with self._lock:
            paths = [
                p.model_copy(deep=True) for p in self._paths.values()
                if (robot_id is None or p.robot_id == robot_id)
                and (task_id is None or p.task_id == task_id)
                and (status is None or p.path_status == status)
            ]
        paths.reverse()
        paths.sort(key=lambda p: p.created_at, reverse=True)
        return paths

    def _install(self, path: NavigationPath) -> Optional[NavigationPath]:
        previous = self._paths.get(path.path_id)
        self._paths[path.path_id] = path
        return previous
