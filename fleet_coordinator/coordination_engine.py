"""
Coordination Engine.

Matches pending tasks to eligible robots and exposes the fleet operations a
transport layer calls. All components share one lock and one commit path, so
every operation is applied as a single atomic unit.
"""

import math
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.base_component import BaseComponent
from core.data_models import (
    Robot, RobotStatus, Task, TaskStatus, NavigationPath, PathStatus, Detection,
    EligibilityCriteria, LogLevel, SystemLogEntry
)
from core.errors import FleetCoordinationError, ConflictError, InvalidTransitionError, FleetValidationError
from core.interfaces import ChangeSet, IStateStore, ISystemLogSink
from config.settings import CoordinatorSettings, SystemSettings
from .detection_ingest import DetectionIngest
from .navigation_tracker import NavigationPathTracker
from .robot_registry import RobotRegistry
from .state_store import StateCommitter
from .system_log import SystemLog
from .task_scheduler import TaskScheduler


class CoordinationEventType(str, Enum):
    """Kinds of state change reported to engine listeners."""
    ROBOT_REGISTERED = "ROBOT_REGISTERED"
    ROBOT_STATUS_CHANGED = "ROBOT_STATUS_CHANGED"
    ROBOT_DEACTIVATED = "ROBOT_DEACTIVATED"
    TASK_SUBMITTED = "TASK_SUBMITTED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"
    PATH_PLANNED = "PATH_PLANNED"
    PATH_STATUS_CHANGED = "PATH_STATUS_CHANGED"
    DETECTION_RECORDED = "DETECTION_RECORDED"


@dataclass
class CoordinationEvent:
    """A committed state change."""
    event_type: CoordinationEventType
    entity_id: str
    robot_id: Optional[str] = None
    previous_status: Optional[str] = None
    current_status: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


EligibilityPolicy = Callable[[Task, Robot], bool]
EventListener = Callable[[CoordinationEvent], None]


class CoordinationEngine(BaseComponent):
    """
    Fleet coordination engine.

    Owns the robot registry, task scheduler, navigation path tracker and
    detection ingest, runs scheduling passes and publishes events for every
    committed change.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 store: Optional[IStateStore] = None,
                 log_sink: Optional[ISystemLogSink] = None,
                 max_log_entries: int = 10000):
        """
        Initialize the coordination engine.

        Args:
            config: Coordinator settings as a dictionary (see CoordinatorSettings)
            store: Durable storage collaborator, in-memory when omitted
            log_sink: System log sink, bounded in-memory buffer when omitted
            max_log_entries: Size of the in-memory log buffer
        """
        super().__init__("coordination_engine", config or {})
        known = set(asdict(CoordinatorSettings()))
        unknown = set(self.config) - known
        if unknown:
            self.logger.warning(f"Ignoring unknown coordinator settings: {sorted(unknown)}")
        self.settings = CoordinatorSettings(**{k: v for k, v in self.config.items() if k in known})
        component_config = asdict(self.settings)

        self.lock = threading.RLock()
        self.system_log = SystemLog(log_sink, max_entries=max_log_entries)
        self.committer = StateCommitter(store, self.lock)
        self.registry = RobotRegistry(self.committer, self.system_log, component_config)
        self.tracker = NavigationPathTracker(self.committer, self.registry, self.system_log, component_config)
        self.scheduler = TaskScheduler(self.committer, self.registry, self.tracker,
                                       self.system_log, component_config)
        self.detections = DetectionIngest(self.committer, self.registry, self.system_log, component_config)
        self.committer.add_listener(self._publish_changes)

        self._listeners: List[EventListener] = []
        self._eligibility_policies: Dict[str, List[EligibilityPolicy]] = {}
        self._selection_strategies = {
            'highest_battery': self._order_by_battery,
            'first_registered': self._order_by_registration,
            'nearest': self._order_by_distance,
        }
        self._pass_lock = threading.RLock()
        self._passes_run = 0
        self._tasks_assigned = 0

        self._scheduling_active = False
        self._scheduler_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @classmethod
    def from_settings(cls, settings: SystemSettings, store: Optional[IStateStore] = None,
                      log_sink: Optional[ISystemLogSink] = None) -> 'CoordinationEngine':
        """Build an engine from loaded system settings."""
        return cls(asdict(settings.coordinator), store=store, log_sink=log_sink,
                   max_log_entries=settings.storage.max_log_entries)

    # Lifecycle

    async def initialize(self) -> bool:
        self.logger.info("Initializing coordination engine")
        results = [await component.initialize()
                   for component in (self.registry, self.scheduler, self.tracker, self.detections)]
        return all(results)

    async def start(self) -> bool:
        """Start the background scheduling thread."""
        try:
            self._start_scheduling()
            self.logger.info(f"Coordination engine started, scheduling every {self.settings.scheduling_interval}s")
            return True
        except Exception as e:
            self.logger.error(f"Failed to start coordination engine: {e}")
            return False

    async def stop(self) -> bool:
        """Stop the background scheduling thread."""
        try:
            self._stop_scheduling()
            self.logger.info("Coordination engine stopped")
            return True
        except Exception as e:
            self.logger.error(f"Failed to stop coordination engine: {e}")
            return False

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the engine and its components."""
        components = {}
        for component in (self.registry, self.scheduler, self.tracker, self.detections):
            components[component.component_name] = await component.health_check()
        healthy = all(c.get('status') == 'healthy' for c in components.values())
        return {
            'component': 'coordination_engine',
            'status': 'healthy' if healthy else 'degraded',
            'scheduling_active': self._scheduling_active,
            'components': components,
            'timestamp': datetime.now()
        }

    def _start_scheduling(self) -> None:
        """Start the scheduling thread."""
        if self._scheduling_active:
            return
        self._scheduling_active = True
        self._stop_event.clear()
        self._scheduler_thread = threading.Thread(target=self._scheduling_loop, daemon=True)
        self._scheduler_thread.start()

    def _stop_scheduling(self) -> None:
        """Stop the scheduling thread."""
        self._scheduling_active = False
        self._stop_event.set()
        if self._scheduler_thread and self._scheduler_thread.is_alive():
            self._scheduler_thread.join(timeout=5.0)

    def _scheduling_loop(self) -> None:
        """Main scheduling loop."""
        while self._scheduling_active:
            try:
                self.run_scheduling_pass()
                self._stop_event.wait(self.settings.scheduling_interval)
            except Exception as e:
                self.logger.error(f"Error in scheduling loop: {e}")
                self._stop_event.wait(1.0)

    # Events

    def add_listener(self, listener: EventListener) -> None:
        """
        Register a callback receiving a CoordinationEvent per committed change.

        Callbacks run inside the commit, on the committing thread, and must
        not call mutating engine operations.
        """
        with self.lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> bool:
        with self.lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
                return True
            return False

    def _publish_changes(self, applied) -> None:
        for kind, previous, current in applied:
            event = self._event_for(kind, previous, current)
            if event is None:
                continue
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as e:
                    self.logger.error(f"Event listener failed on {event.event_type.value}: {e}")

    @staticmethod
    def _event_for(kind: str, previous: Any, current: Any) -> Optional[CoordinationEvent]:
        """Map a committed (previous, current) record pair to an event."""
        if kind == 'robot':
            if previous is None:
                return CoordinationEvent(CoordinationEventType.ROBOT_REGISTERED, current.robot_id,
                                         current.robot_id, current_status=current.status.value,
                                         data={'robot_type': current.robot_type})
            if previous.is_active and not current.is_active:
                return CoordinationEvent(CoordinationEventType.ROBOT_DEACTIVATED, current.robot_id,
                                         current.robot_id, current_status=current.status.value)
            if previous.status != current.status:
                return CoordinationEvent(CoordinationEventType.ROBOT_STATUS_CHANGED, current.robot_id,
                                         current.robot_id, previous.status.value, current.status.value)
            return None

        if kind == 'task':
            if previous is None:
                return CoordinationEvent(CoordinationEventType.TASK_SUBMITTED, current.task_id,
                                         current_status=current.status.value,
                                         data={'task_type': current.task_type, 'priority': current.priority})
            if previous.status == current.status:
                return None
            event_type = (CoordinationEventType.TASK_ASSIGNED if current.status == TaskStatus.ASSIGNED
                          else CoordinationEventType.TASK_STATUS_CHANGED)
            return CoordinationEvent(event_type, current.task_id, current.robot_id or previous.robot_id,
                                     previous.status.value, current.status.value,
                                     data={'path_id': current.path_id, 'error_message': current.error_message})

        if kind == 'path':
            if previous is None:
                return CoordinationEvent(CoordinationEventType.PATH_PLANNED, current.path_id, current.robot_id,
                                         current_status=current.path_status.value,
                                         data={'task_id': current.task_id})
            if previous.path_status == current.path_status:
                return None
            return CoordinationEvent(CoordinationEventType.PATH_STATUS_CHANGED, current.path_id, current.robot_id,
                                     previous.path_status.value, current.path_status.value,
                                     data={'task_id': current.task_id})

        if kind == 'detection':
            return CoordinationEvent(CoordinationEventType.DETECTION_RECORDED, current.detection_id,
                                     current.robot_id,
                                     data={'objects': len(current.detected_objects),
                                           'image_path': current.image_path})
        return None

    # Matching

    def register_eligibility_policy(self, task_type: str, policy: EligibilityPolicy) -> None:
        """
        Add a hard constraint for tasks of one type.

        Args:
            task_type: Task type the policy applies to
            policy: Callable (task, robot) -> bool; robots returning False are skipped
        """
        with self.lock:
            self._eligibility_policies.setdefault(task_type, []).append(policy)

    def criteria_for(self, task: Task) -> EligibilityCriteria:
        zone = task.target_zone() if self.settings.zone_matching == 'exact' else None
        return self.registry.default_criteria(zone=zone, robot_type=task.required_robot_type())

    def find_candidates(self, task: Task) -> List[Robot]:
        """Eligible robots for a task, best candidate first."""
        with self.lock:
            candidates = self.registry.list_eligible(self.criteria_for(task))
        candidates = [robot for robot in candidates if self.passes_policies(task, robot)]

        ordered = self._selection_strategies[self.settings.robot_selection](task, candidates)
        if self.settings.zone_matching == 'preferred' and task.target_zone():
            ordered.sort(key=lambda robot: robot.current_zone != task.target_zone())
        return ordered

    def passes_policies(self, task: Task, robot: Robot) -> bool:
        """Run the policies for the task's type; a policy that raises rejects the robot."""
        with self.lock:
            policies = list(self._eligibility_policies.get(task.task_type, ()))
        for policy in policies:
            try:
                if not policy(task, robot):
                    return False
            except Exception as e:
                self.logger.error(f"Eligibility policy for {task.task_type} failed on task {task.task_id}, "
                                  f"robot {robot.robot_id}: {e}")
                return False
        return True

    @staticmethod
    def _order_by_registration(task: Task, robots: List[Robot]) -> List[Robot]:
        return list(robots)

    @staticmethod
    def _order_by_battery(task: Task, robots: List[Robot]) -> List[Robot]:
        return sorted(robots, key=lambda robot: -robot.battery_level)

    @staticmethod
    def _order_by_distance(task: Task, robots: List[Robot]) -> List[Robot]:
        """Closest robot to the task target first; robots without a position last."""
        target = task.target_position()
        if target is None:
            return list(robots)

        def distance(robot: Robot) -> float:
            position = robot.position()
            if position is None:
                return math.inf
            return math.hypot(position[0] - target[0], position[1] - target[1])

        return sorted(robots, key=distance)

    def run_scheduling_pass(self) -> List[Task]:
        """
        Try to assign every PENDING task, highest priority first.

        Returns:
            Tasks assigned during this pass
        """
        assigned: List[Task] = []
        with self._pass_lock:
            self._passes_run += 1
            for task in self.scheduler.peek_eligible():
                criteria = self.criteria_for(task)
                for robot in self.find_candidates(task):
                    try:
                        assigned.append(self.scheduler.claim(task.task_id, robot.robot_id, criteria,
                                                             accepts=self.passes_policies))
                        break
                    except ConflictError as e:
                        self.logger.warning(f"Claim of task {task.task_id} by robot {robot.robot_id} lost: {e}")
                        if self.scheduler.get_task(task.task_id).status != TaskStatus.PENDING:
                            break
                    except FleetCoordinationError as e:
                        self.logger.warning(f"Skipping task {task.task_id} in scheduling pass: {e}")
                        break
            self._tasks_assigned += len(assigned)

        if assigned:
            self.logger.info(f"Scheduling pass assigned {len(assigned)} task(s)")
        return assigned

    def _trigger_pass(self) -> None:
        if not self.settings.schedule_on_trigger:
            return
        try:
            self.run_scheduling_pass()
        except FleetCoordinationError as e:
            self.logger.error(f"Triggered scheduling pass failed: {e}")

    # Robot operations

    def register_robot(self, robot_name: str, robot_type: str, **robot_fields: Any) -> Robot:
        """
        Register a robot and schedule pending work onto it.

        Raises:
            FleetValidationError: if a field is out of range
            ConflictError: if the robot id is already registered
        """
        robot_id = self.registry.register_robot(robot_name, robot_type, **robot_fields)
        self._trigger_pass()
        return self.registry.get_robot(robot_id)

    def update_telemetry(self, robot_id: str, battery_level: Optional[int] = None,
                         latitude: Optional[float] = None, longitude: Optional[float] = None,
                         zone: Optional[str] = None, distance_delta_km: float = 0.0) -> Robot:
        """
        Record telemetry; a CHARGING robot reaching the charge-complete level
        is released to IDLE when auto release is enabled.

        Raises:
            NotFoundError: if the robot is not registered
            FleetValidationError: if a value is out of range
        """
        with self.lock:
            before = self.registry.get_robot(robot_id)
            after = self.registry.prepare_telemetry(before, battery_level, latitude, longitude,
                                                    zone, distance_delta_km)
            charged = (self.settings.auto_release_charging
                       and after.status == RobotStatus.CHARGING
                       and after.battery_level >= self.settings.charge_complete_level)
            if charged:
                after = self.registry.prepare_status(after, RobotStatus.IDLE)
            self.committer.commit(ChangeSet(robots=[after]))
            criteria = self.registry.default_criteria()
            became_eligible = (not self.registry.is_eligible(before, criteria)
                               and self.registry.is_eligible(after, criteria))

        if charged:
            self.registry.log_transition(before, after, "charge complete")
        if became_eligible:
            self._trigger_pass()
        return self.registry.get_robot(robot_id)

    def set_robot_status(self, robot_id: str, new_status: RobotStatus, reason: Optional[str] = None) -> Robot:
        """
        Request a robot status change.

        A robot entering ERROR fails the task it holds in the same unit. Any
        other change of a robot holding a task is rejected; the task's
        progress must be reported instead.

        Raises:
            NotFoundError: if the robot is not registered
            InvalidTransitionError: if the move is not allowed
        """
        try:
            new_status = RobotStatus(new_status)
        except ValueError as e:
            raise FleetValidationError(f"Unknown robot status: {new_status}") from e

        with self.lock:
            robot = self.registry.get_robot(robot_id)
            active = self.scheduler.find_active_task(robot_id)
            if active is None:
                self.registry.set_status(robot_id, new_status, reason)
            elif new_status == RobotStatus.ERROR:
                robot_after = self.registry.prepare_status(robot, RobotStatus.ERROR)
                message = reason or f"Robot {robot_id} entered ERROR"
                changes = self.scheduler.prepare_robot_failure(robot_id, message)
                changes.robots.append(robot_after)
                self.scheduler.commit_and_log(changes)
            else:
                raise InvalidTransitionError(
                    "Robot", robot_id, robot.status, new_status,
                    detail=f"robot holds active task {active.task_id}"
                )

        if new_status == RobotStatus.IDLE:
            self._trigger_pass()
        return self.registry.get_robot(robot_id)

    def deactivate_robot(self, robot_id: str) -> Robot:
        """
        Deactivate a robot. Its active task goes back to PENDING and is
        rescheduled.

        Raises:
            NotFoundError: if the robot is not registered
        """
        with self.lock:
            robot = self.registry.get_robot(robot_id)
            if not robot.is_active:
                return robot
            robot_after, changes = self.scheduler.prepare_release(robot, "robot deactivated")
            robot_after = self.registry.prepare_deactivation(robot_after)
            changes.robots.append(robot_after)
            self.scheduler.commit_and_log(changes)
            released = bool(changes.tasks)

        self.registry.log_deactivation(robot_after)
        if released:
            self._trigger_pass()
        return self.registry.get_robot(robot_id)

    def get_robot(self, robot_id: str) -> Robot:
        return self.registry.get_robot(robot_id)

    def list_robots(self, status: Optional[RobotStatus] = None, zone: Optional[str] = None,
                    active_only: bool = False) -> List[Robot]:
        return self.registry.list_robots(status, zone, active_only)

    def list_eligible_robots(self, zone: Optional[str] = None, robot_type: Optional[str] = None) -> List[Robot]:
        return self.registry.list_eligible(self.registry.default_criteria(zone, robot_type))

    def get_fleet_status(self) -> Dict[str, Any]:
        return self.registry.get_fleet_status()

    # Task operations

    def submit_task(self, task_type: str, task_data: Optional[Dict[str, Any]] = None,
                    priority: Optional[int] = None) -> Task:
        """
        Submit a task and attempt to assign it immediately.

        Returns:
            The task after the triggered scheduling pass

        Raises:
            FleetValidationError: if the priority or payload is invalid
        """
        task = self.scheduler.submit(task_type, task_data, priority)
        self._trigger_pass()
        return self.scheduler.get_task(task.task_id)

    def cancel_task(self, task_id: str) -> Task:
        task = self.scheduler.cancel(task_id)
        self._trigger_pass()
        return task

    def report_progress(self, task_id: str, new_status: TaskStatus, error_message: Optional[str] = None,
                        robot_fault: bool = False) -> Task:
        task = self.scheduler.report_progress(task_id, new_status, error_message, robot_fault)
        if task.is_terminal():
            self._trigger_pass()
        return task

    def get_task(self, task_id: str) -> Task:
        return self.scheduler.get_task(task_id)

    def list_tasks(self, status: Optional[TaskStatus] = None, robot_id: Optional[str] = None,
                   priority: Optional[int] = None, min_priority: Optional[int] = None) -> List[Task]:
        return self.scheduler.list_tasks(status, robot_id, priority, min_priority)

    def peek_pending_tasks(self) -> List[Task]:
        return self.scheduler.peek_eligible()

    # Path operations

    def advance_path(self, path_id: str, new_status: PathStatus) -> NavigationPath:
        """
        Report navigation progress; task-linked paths move their task too.

        Raises:
            NotFoundError: if the path does not exist
            AlreadyTerminalError: if the path already finished
            InvalidTransitionError: if the move is not allowed
        """
        path = self.scheduler.apply_path_update(path_id, new_status)
        if path.is_terminal():
            self._trigger_pass()
        return path

    def get_path(self, path_id: str) -> NavigationPath:
        return self.tracker.get_path(path_id)

    def list_paths(self, robot_id: Optional[str] = None, task_id: Optional[str] = None,
                   status: Optional[PathStatus] = None) -> List[NavigationPath]:
        return self.tracker.list_paths(robot_id, task_id, status)

    # Detections and logs

    def record_detection(self, robot_id: str, image_path: str, detected_objects: List[Any],
                         confidence_threshold: float = 0.5, model_version: str = "unknown",
                         processing_time_ms: Optional[int] = None) -> Detection:
        return self.detections.record(robot_id, image_path, detected_objects, confidence_threshold,
                                      model_version, processing_time_ms)

    def get_detection(self, detection_id: str) -> Detection:
        return self.detections.get_detection(detection_id)

    def list_detections(self, robot_id: Optional[str] = None, limit: Optional[int] = None) -> List[Detection]:
        return self.detections.list_by_robot(robot_id, limit)

    def list_logs(self, robot_id: Optional[str] = None, level: Optional[LogLevel] = None,
                  limit: Optional[int] = None) -> List[SystemLogEntry]:
        return self.system_log.list_entries(robot_id, level, limit)

    def get_statistics(self) -> Dict[str, Any]:
        """Fleet, task and scheduling statistics."""
        return {
            'fleet': self.registry.get_fleet_status(),
            'tasks': self.scheduler.get_task_statistics(),
            'detections': self.detections.count(),
            'scheduling_passes': self._passes_run,
            'tasks_assigned': self._tasks_assigned,
            'engine': self.get_status(),
            'timestamp': datetime.now()
        }
