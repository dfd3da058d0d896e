"""
Task Queue and Scheduler.

Holds pending, assigned and in-progress work items, orders the pending ones
by priority and age, and applies every task transition together with the
robot and path changes it implies.
"""

import itertools
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from core.base_component import BaseComponent
from core.data_models import (
    Task, TaskStatus, Robot, RobotStatus, NavigationPath, PathStatus, LogLevel, EligibilityCriteria
)
from core.errors import (
    NotFoundError, InvalidTransitionError, FleetValidationError, ConflictError, AlreadyTerminalError
)
from core.interfaces import ChangeSet
from .navigation_tracker import NavigationPathTracker
from .robot_registry import RobotRegistry
from .state_store import StateCommitter
from .system_log import SystemLog


class TaskPriority(int, Enum):
    """Task priority levels."""
    LOW = 1
    NORMAL = 5
    HIGH = 8
    CRITICAL = 10


TASK_TRANSITIONS: Dict[TaskStatus, frozenset] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ASSIGNED, TaskStatus.CANCELLED}),
    TaskStatus.ASSIGNED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED,
                                    TaskStatus.CANCELLED, TaskStatus.PENDING}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.PENDING}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

PROGRESS_STATUSES = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED})


@dataclass
class QueuedTask:
    """Ordering key of a pending task."""
    priority: int
    created_at: datetime
    sequence: int
    task_id: str

    def __lt__(self, other):
        """Higher priority first, then older tasks, then earlier submissions."""
        if self.priority != other.priority:
            return self.priority > other.priority
        if self.created_at != other.created_at:
            return self.created_at < other.created_at
        return self.sequence < other.sequence


class TaskQueue:
    """
    Priority-ordered view of PENDING tasks.

    The order is priority descending, then creation time ascending, with the
    submission sequence breaking clock ties. A task returned to PENDING keeps
    its original sequence.
    """

    def __init__(self, aging_interval_seconds: Optional[float] = None):
        """Initialize the task queue."""
        self._entries: Dict[str, QueuedTask] = {}
        self._sequences: Dict[str, int] = {}
        self._counter = itertools.count()
        self._aging_interval = aging_interval_seconds

    def add_task(self, task: Task) -> bool:
        """
        Add a task to the queue.

        Returns:
            True if task added, False if it was already queued
        """
        if task.task_id in self._entries:
            return False
        sequence = self._sequences.setdefault(task.task_id, next(self._counter))
        self._entries[task.task_id] = QueuedTask(task.priority, task.created_at, sequence, task.task_id)
        return True

    def remove_task(self, task_id: str) -> bool:
        return self._entries.pop(task_id, None) is not None

    def contains(self, task_id: str) -> bool:
        return task_id in self._entries

    def effective_priority(self, entry: QueuedTask, now: Optional[datetime] = None) -> int:
        """Stored priority, raised by one per aging interval waited when aging is on."""
        if not self._aging_interval:
            return entry.priority
        waited = ((now or datetime.now()) - entry.created_at).total_seconds()
        boost = max(0, math.floor(waited / self._aging_interval))
        return min(10, entry.priority + boost)

    def ordered_ids(self, now: Optional[datetime] = None) -> List[str]:
        """Task ids in scheduling order."""
        if self._aging_interval:
            now = now or datetime.now()
            keys = [QueuedTask(self.effective_priority(e, now), e.created_at, e.sequence, e.task_id)
                    for e in self._entries.values()]
        else:
            keys = list(self._entries.values())
        return [entry.task_id for entry in sorted(keys)]

    def size(self) -> int:
        return len(self._entries)

    def is_empty(self) -> bool:
        return not self._entries


class TaskScheduler(BaseComponent):
    """
    Scheduler for fleet tasks.

    Owns the task table, validates every task transition and builds the
    joint robot/path changes so they commit as one unit.
    """

    def __init__(self, committer: StateCommitter, registry: RobotRegistry,
                 tracker: NavigationPathTracker, system_log: Optional[SystemLog] = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the task scheduler.

        Args:
            committer: Shared commit path and lock
            registry: Robot registry used for eligibility and robot transitions
            tracker: Path tracker used to create and finish task paths
            system_log: System log collaborator
            config: Configuration dictionary
        """
        super().__init__("task_scheduler", config or {})
        self._committer = committer
        self._lock = committer.lock
        self.registry = registry
        self.tracker = tracker
        self._system_log = system_log or SystemLog()
        self.task_queue = TaskQueue(self.config.get('aging_interval_seconds'))
        self._tasks: Dict[str, Task] = {}
        self._robot_tasks: Dict[str, str] = {}
        committer.register_installer('task', self._install)
        tracker.set_outcome_handler(self._apply_path_outcome)
        registry.set_task_holder(self._robot_tasks.get)

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the task scheduler."""
        with self._lock:
            return {
                'component': 'task_scheduler',
                'status': 'healthy',
                'pending_tasks': self.task_queue.size(),
                'active_tasks': len(self._robot_tasks),
                'timestamp': datetime.now()
            }

    # Submission and queries

    def submit(self, task_type: str, task_data: Optional[Dict[str, Any]] = None,
               priority: Optional[int] = None) -> Task:
        """
        Submit a new task.

        Args:
            task_type: Type tag, e.g. MOVE_TO_LOCATION
            task_data: Opaque payload; target_zone, target_lat, target_lng,
                robot_type and waypoints are interpreted when present
            priority: 1-10, defaults to TaskPriority.NORMAL

        Raises:
            FleetValidationError: if the priority or payload is invalid
        """
        if priority is None:
            priority = TaskPriority.NORMAL
        if isinstance(priority, bool) or not isinstance(priority, int) or not 1 <= priority <= 10:
            raise FleetValidationError(f"Priority must be an integer between 1 and 10, got {priority!r}")

        try:
            task = Task(task_type=task_type, task_data=task_data or {}, priority=int(priority))
        except ValidationError as e:
            raise FleetValidationError(f"Invalid task: {e}") from e
        self._validate_payload(task)

        with self._lock:
            self._committer.commit(ChangeSet(tasks=[task]))

        self._system_log.emit(LogLevel.INFO, self.component_name,
                              f"Task {task.task_id} ({task.task_type}) submitted with priority {task.priority}",
                              data={"task_id": task.task_id, "priority": task.priority})
        return task.model_copy(deep=True)

    def _validate_payload(self, task: Task) -> None:
        """Reject payload fields the scheduler interprets but cannot use."""
        data = task.task_data
        try:
            target = task.target_position()
        except (TypeError, ValueError) as e:
            raise FleetValidationError(f"target_lat/target_lng must be numbers: {e}") from e
        if target is not None and not (-90.0 <= target[0] <= 90.0 and -180.0 <= target[1] <= 180.0):
            raise FleetValidationError(f"Target position out of range: {target}")

        waypoints = data.get('waypoints')
        if waypoints is not None:
            if not isinstance(waypoints, list):
                raise FleetValidationError("waypoints must be a list")
            try:
                for waypoint in waypoints:
                    NavigationPathTracker._to_waypoint(waypoint)
            except (ValidationError, TypeError, IndexError, KeyError) as e:
                raise FleetValidationError(f"Invalid waypoint: {e}") from e

    def get_task(self, task_id: str) -> Task:
        """
        Get a copy of a task.

        Raises:
            NotFoundError: if the task does not exist
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
            return task.model_copy(deep=True)

    def list_tasks(self, status: Optional[TaskStatus] = None, robot_id: Optional[str] = None,
                   priority: Optional[int] = None, min_priority: Optional[int] = None) -> List[Task]:
        """List tasks in submission order, optionally filtered."""
        with self._lock:
            return [
                t.model_copy(deep=True) for t in self._tasks.values()
                if (status is None or t.status == status)
                and (robot_id is None or t.robot_id == robot_id)
                and (priority is None or t.priority == priority)
                and (min_priority is None or t.priority >= min_priority)
            ]

    def peek_eligible(self) -> List[Task]:
        """PENDING tasks in scheduling order."""
        with self._lock:
            return [self._tasks[task_id].model_copy(deep=True) for task_id in self.task_queue.ordered_ids()]

    def find_active_task(self, robot_id: str) -> Optional[Task]:
        """The ASSIGNED or IN_PROGRESS task held by a robot, if any."""
        with self._lock:
            task_id = self._robot_tasks.get(robot_id)
            return self._tasks[task_id].model_copy(deep=True) if task_id else None

    # Matching

    def claim(self, task_id: str, robot_id: str, criteria: EligibilityCriteria,
              accepts: Optional[Callable[[Task, Robot], bool]] = None) -> Task:
        """
        Atomically assign a PENDING task to an eligible robot.

        `accepts` is an extra (task, robot) check run under the lock together
        with `criteria`.

        Task -> ASSIGNED, robot -> RUNNING and a PLANNED path are committed
        together.

        Raises:
            NotFoundError: if the task or robot does not exist
            ConflictError: if the task is no longer PENDING or the robot is
                no longer eligible
        """
        with self._lock:
            task = self.get_task(task_id)
            if task.status != TaskStatus.PENDING:
                raise ConflictError(f"Task {task_id} is {task.status.value}, not PENDING")

            robot = self.registry.get_robot(robot_id)
            if (robot_id in self._robot_tasks or not self.registry.is_eligible(robot, criteria)
                    or (accepts is not None and not accepts(task, robot))):
                raise ConflictError(f"Robot {robot_id} is no longer eligible for task {task_id}")

            now = datetime.now()
            robot_after = self.registry.prepare_status(robot, RobotStatus.RUNNING, now)
            start, end = self.tracker.endpoints_for(robot, task)
            path = self.tracker.build_path(robot_id, start, end,
                                           task.task_data.get('waypoints'), task_id=task_id)
            task_after = self._transition(task, TaskStatus.ASSIGNED, robot_id=robot_id,
                                          assigned_at=now, path_id=path.path_id)

            self._committer.commit(ChangeSet(robots=[robot_after], tasks=[task_after], paths=[path]))

        self.registry.log_transition(robot, robot_after, f"assigned task {task_id}")
        self.log_task_change(task, task_after)
        return task_after.model_copy(deep=True)

    # Progress, cancellation and path outcomes

    def cancel(self, task_id: str) -> Task:
        """
        Cancel a PENDING or ASSIGNED task and free any robot holding it.

        Raises:
            NotFoundError: if the task does not exist
            AlreadyTerminalError: if the task already finished
            InvalidTransitionError: if the task is IN_PROGRESS
        """
        with self._lock:
            task = self.get_task(task_id)
            if task.is_terminal():
                raise AlreadyTerminalError("Task", task_id, task.status)
            if task.status == TaskStatus.IN_PROGRESS:
                raise InvalidTransitionError(
                    "Task", task_id, task.status, TaskStatus.CANCELLED,
                    detail="in-progress tasks must report completion or failure"
                )
            changes = self._finish(task, TaskStatus.CANCELLED)
            self.commit_and_log(changes)
            return changes.tasks[0].model_copy(deep=True)

    def report_progress(self, task_id: str, new_status: TaskStatus,
                        error_message: Optional[str] = None, robot_fault: bool = False) -> Task:
        """
        Apply a progress report from the robot executing a task.

        Args:
            task_id: Task being reported on
            new_status: IN_PROGRESS, COMPLETED or FAILED
            error_message: Required for FAILED
            robot_fault: For FAILED, send the robot to ERROR instead of IDLE

        Raises:
            NotFoundError: if the task does not exist
            AlreadyTerminalError: if the task already finished
            FleetValidationError: if FAILED has no error message or the status is unknown
            InvalidTransitionError: if the report does not fit the task's status
        """
        try:
            new_status = TaskStatus(new_status)
        except ValueError as e:
            raise FleetValidationError(f"Unknown task status: {new_status}") from e

        with self._lock:
            task = self.get_task(task_id)
            if task.is_terminal():
                raise AlreadyTerminalError("Task", task_id, task.status)
            if new_status not in PROGRESS_STATUSES:
                raise InvalidTransitionError("Task", task_id, task.status, new_status,
                                             detail="progress reports may only set IN_PROGRESS, COMPLETED or FAILED")
            if error_message is not None and not isinstance(error_message, str):
                raise FleetValidationError(f"Task {task_id} error message must be a string")
            if new_status == TaskStatus.FAILED and not (error_message and error_message.strip()):
                raise FleetValidationError(f"Task {task_id} cannot fail without an error message")
            if new_status not in TASK_TRANSITIONS[task.status]:
                raise InvalidTransitionError("Task", task_id, task.status, new_status)

            if new_status == TaskStatus.IN_PROGRESS:
                changes = self._start(task)
            else:
                changes = self._finish(task, new_status, error_message, robot_fault)
            self.commit_and_log(changes)
            return changes.tasks[0].model_copy(deep=True)

    def apply_path_update(self, path_id: str, new_status: PathStatus) -> NavigationPath:
        """Advance a path; a task-linked path carries the outcome to its task."""
        return self.tracker.advance(path_id, new_status)

    def release_robot(self, robot_id: str, reason: str) -> Optional[Task]:
        """
        Return the robot's active task to PENDING.

        Returns:
            The released task, or None if the robot held no task
        """
        with self._lock:
            robot = self.registry.get_robot(robot_id)
            robot_after, changes = self.prepare_release(robot, reason)
            if changes.is_empty():
                return None
            if robot_after.status != robot.status:
                changes.robots.append(robot_after)
            self.commit_and_log(changes)
            return changes.tasks[0].model_copy(deep=True)

    def fail_robot_task(self, robot_id: str, message: str) -> Optional[Task]:
        """Fail the active task of a robot, leaving the robot record alone."""
        with self._lock:
            changes = self.prepare_robot_failure(robot_id, message)
            if changes.is_empty():
                return None
            self.commit_and_log(changes)
            return changes.tasks[0].model_copy(deep=True)

    def _apply_path_outcome(self, path: NavigationPath, new_status: PathStatus) -> NavigationPath:
        """
        Advance a task-linked path and carry the outcome to its task.

        The path record is written ahead of the task transition it triggers.
        """
        with self._lock:
            now = datetime.now()
            path_after = self.tracker.prepare_advance(path, new_status, now)
            task = self._tasks.get(path.task_id)

            if task is None or not task.is_active() or task.path_id != path.path_id:
                changes = ChangeSet(paths=[path_after])
            elif path_after.path_status == PathStatus.EXECUTING:
                if task.status == TaskStatus.ASSIGNED:
                    changes = ChangeSet(paths=[path_after],
                                        tasks=[self._transition(task, TaskStatus.IN_PROGRESS)])
                else:
                    changes = ChangeSet(paths=[path_after])
            elif path_after.path_status == PathStatus.COMPLETED:
                changes = self._finish(task, TaskStatus.COMPLETED, path_override=path_after, now=now)
            else:
                changes = self._finish(task, TaskStatus.FAILED,
                                       error_message=f"navigation path {path.path_id} failed",
                                       path_override=path_after, now=now)
            self.commit_and_log(changes)
            return path_after.model_copy(deep=True)

    def _start(self, task: Task) -> ChangeSet:
        changes = ChangeSet(tasks=[self._transition(task, TaskStatus.IN_PROGRESS)])
        path = self._task_path(task)
        if path is not None and path.path_status == PathStatus.PLANNED:
            changes.paths.append(self.tracker.prepare_advance(path, PathStatus.EXECUTING))
        return changes

    def _finish(self, task: Task, outcome: TaskStatus, error_message: Optional[str] = None,
                robot_fault: bool = False, path_override: Optional[NavigationPath] = None,
                now: Optional[datetime] = None) -> ChangeSet:
        """
        Build the terminal task record plus the robot and path changes it implies.

        Only COMPLETED and FAILED stamp completed_at; a cancelled task never ran.
        """
        now = now or datetime.now()
        task_after = self._transition(
            task, outcome,
            completed_at=now if outcome in (TaskStatus.COMPLETED, TaskStatus.FAILED) else None,
            error_message=error_message.strip() if outcome == TaskStatus.FAILED else None
        )
        changes = ChangeSet(tasks=[task_after])

        if task.robot_id and task.is_active():
            robot = self.registry.get_robot(task.robot_id)
            if robot.status == RobotStatus.RUNNING:
                target = RobotStatus.ERROR if (robot_fault and outcome == TaskStatus.FAILED) else RobotStatus.IDLE
                changes.robots.append(self.registry.prepare_status(robot, target, now))

        path = path_override or self._task_path(task)
        if path is not None and not path.is_terminal():
            path_outcome = PathStatus.COMPLETED if outcome == TaskStatus.COMPLETED else PathStatus.FAILED
            path = self.tracker.prepare_finish(path, path_outcome, now)
        if path is not None and (path_override is not None or path.is_terminal()):
            changes.paths.append(path)
        return changes

    def prepare_release(self, robot: Robot, reason: str) -> Tuple[Robot, ChangeSet]:
        """
        Return a robot's active task to PENDING.

        The task loses its robot, assignment time and path; the path fails
        and a RUNNING robot goes back to IDLE. Returns the robot record to
        build further changes on, and the task/path changes.
        """
        task_id = self._robot_tasks.get(robot.robot_id)
        if task_id is None:
            return robot, ChangeSet()

        task = self._tasks[task_id]
        now = datetime.now()
        task_after = self._transition(task, TaskStatus.PENDING, robot_id=None, assigned_at=None, path_id=None)
        changes = ChangeSet(tasks=[task_after])

        path = self._task_path(task)
        if path is not None and not path.is_terminal():
            changes.paths.append(self.tracker.prepare_advance(path, PathStatus.FAILED, now))

        if robot.status == RobotStatus.RUNNING:
            robot = self.registry.prepare_status(robot, RobotStatus.IDLE, now)
        self.logger.info(f"Task {task_id} released from robot {robot.robot_id}: {reason}")
        return robot, changes

    def prepare_robot_failure(self, robot_id: str, message: str) -> ChangeSet:
        """Fail the active task of a robot that entered ERROR. Robot changes are left to the caller."""
        task_id = self._robot_tasks.get(robot_id)
        if task_id is None:
            return ChangeSet()
        task = self._tasks[task_id]
        now = datetime.now()
        changes = ChangeSet(tasks=[self._transition(task, TaskStatus.FAILED, completed_at=now,
                                                    error_message=message)])
        path = self._task_path(task)
        if path is not None and not path.is_terminal():
            changes.paths.append(self.tracker.prepare_advance(path, PathStatus.FAILED, now))
        return changes

    # Internals

    def _transition(self, task: Task, new_status: TaskStatus, **updates: Any) -> Task:
        if task.is_terminal():
            raise AlreadyTerminalError("Task", task.task_id, task.status)
        if new_status not in TASK_TRANSITIONS[task.status]:
            raise InvalidTransitionError("Task", task.task_id, task.status, new_status)
        return task.model_copy(update={'status': new_status, **updates})

    def _task_path(self, task: Task) -> Optional[NavigationPath]:
        if not task.path_id:
            return None
        try:
            return self.tracker.get_path(task.path_id)
        except NotFoundError:
            self.logger.warning(f"Task {task.task_id} references missing path {task.path_id}")
            return None

    def commit_and_log(self, changes: ChangeSet) -> None:
        """Commit a change set, then log each robot, path and task change it made."""
        robots_before = {r.robot_id: self.registry.get_robot(r.robot_id) for r in changes.robots}
        paths_before = {p.path_id: self.tracker.get_path(p.path_id) for p in changes.paths}
        tasks_before = {t.task_id: self._tasks[t.task_id].model_copy() for t in changes.tasks}

        self._committer.commit(changes)

        for robot in changes.robots:
            self.registry.log_transition(robots_before[robot.robot_id], robot)
        for path in changes.paths:
            self.tracker.log_advance(paths_before[path.path_id], path)
        for task in changes.tasks:
            self.log_task_change(tasks_before[task.task_id], task)

    def log_task_change(self, before: Task, after: Task) -> None:
        if before.status == after.status:
            return
        level = LogLevel.WARNING if after.status == TaskStatus.FAILED else LogLevel.INFO
        message = f"Task {after.task_id} {before.status.value} -> {after.status.value}"
        if after.error_message:
            message = f"{message}: {after.error_message}"
        self._system_log.emit(level, self.component_name, message,
                              robot_id=after.robot_id or before.robot_id,
                              data={'task_id': after.task_id, 'from': before.status.value,
                                    'to': after.status.value, 'priority': after.priority})

    def _install(self, task: Task) -> Optional[Task]:
        previous = self._tasks.get(task.task_id)
        self._tasks[task.task_id] = task

        if previous is not None and previous.robot_id and self._robot_tasks.get(previous.robot_id) == task.task_id:
            del self._robot_tasks[previous.robot_id]
        if task.is_active() and task.robot_id:
            self._robot_tasks[task.robot_id] = task.task_id

        if task.status == TaskStatus.PENDING:
            self.task_queue.add_task(task)
        else:
            self.task_queue.remove_task(task.task_id)
        return previous

    def get_task_statistics(self) -> Dict[str, Any]:
        """Get task execution statistics."""
        with self._lock:
            tasks = list(self._tasks.values())

        status_counts = {status.value: 0 for status in TaskStatus}
        for task in tasks:
            status_counts[task.status.value] += 1

        total_completed = status_counts[TaskStatus.COMPLETED.value]
        total_failed = status_counts[TaskStatus.FAILED.value]
        total_processed = total_completed + total_failed

        waits = [(t.assigned_at - t.created_at).total_seconds() for t in tasks if t.assigned_at]
        durations = [(t.completed_at - t.assigned_at).total_seconds()
                     for t in tasks if t.status == TaskStatus.COMPLETED and t.assigned_at and t.completed_at]

        return {
            'pending_tasks': status_counts[TaskStatus.PENDING.value],
            'active_tasks': status_counts[TaskStatus.ASSIGNED.value] + status_counts[TaskStatus.IN_PROGRESS.value],
            'completed_tasks': total_completed,
            'failed_tasks': total_failed,
            'cancelled_tasks': status_counts[TaskStatus.CANCELLED.value],
            'status_distribution': status_counts,
            'total_processed': total_processed,
            'success_rate': total_completed / total_processed if total_processed > 0 else 0.0,
            'average_wait_seconds': sum(waits) / len(waits) if waits else 0.0,
            'average_duration_seconds': sum(durations) / len(durations) if durations else 0.0
        }
