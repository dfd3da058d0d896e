"""
Robot Registry.

Owns the authoritative state of each robot (status, battery, position, zone)
and enforces the robot status state machine.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Any

from pydantic import ValidationError

from core.base_component import BaseComponent
from core.data_models import Robot, RobotStatus, LogLevel, EligibilityCriteria
from core.errors import NotFoundError, InvalidTransitionError, FleetValidationError, ConflictError
from core.interfaces import ChangeSet
from .state_store import StateCommitter
from .system_log import SystemLog


ROBOT_TRANSITIONS: Dict[RobotStatus, frozenset] = {
    RobotStatus.IDLE: frozenset({RobotStatus.RUNNING, RobotStatus.CHARGING, RobotStatus.MAINTENANCE}),
    RobotStatus.RUNNING: frozenset({RobotStatus.IDLE, RobotStatus.ERROR}),
    RobotStatus.ERROR: frozenset({RobotStatus.MAINTENANCE, RobotStatus.IDLE}),
    RobotStatus.CHARGING: frozenset({RobotStatus.IDLE}),
    RobotStatus.MAINTENANCE: frozenset({RobotStatus.IDLE}),
}


class RobotRegistry(BaseComponent):
    """
    Registry for the robot fleet.

    Handles robot registration, telemetry, status transitions and
    eligibility queries. All mutation goes through the shared StateCommitter
    so registry changes can join atomic units with task and path changes.
    """

    def __init__(self, committer: StateCommitter, system_log: Optional[SystemLog] = None,
                 config: Optional[Dict[str, Any]] = None):
        """Initialize the robot registry."""
        super().__init__("robot_registry", config or {})
        self._committer = committer
        self._lock = committer.lock
        self._robots: Dict[str, Robot] = {}
        self._system_log = system_log or SystemLog()
        self._min_battery = self.config.get('min_battery_for_eligibility', 20)
        self._charge_complete_level = self.config.get('charge_complete_level', 80)
        self._low_battery_threshold = self.config.get('low_battery_threshold', 30)
        self._task_holder: Callable[[str], Optional[str]] = lambda robot_id: None
        committer.register_installer('robot', self._install)

    def set_task_holder(self, lookup: Callable[[str], Optional[str]]) -> None:
        """Install the lookup returning the id of the task a robot holds, if any."""
        self._task_holder = lookup

    def _refuse_if_busy(self, robot: Robot, requested: Any) -> None:
        task_id = self._task_holder(robot.robot_id)
        if task_id:
            raise InvalidTransitionError(
                "Robot", robot.robot_id, robot.status, requested,
                detail=f"robot holds active task {task_id}; use the coordination engine"
            )

    @property
    def min_battery(self) -> int:
        return self._min_battery

    @property
    def charge_complete_level(self) -> int:
        return self._charge_complete_level

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the robot registry."""
        with self._lock:
            total_robots = len(self._robots)
            active_robots = sum(1 for r in self._robots.values() if r.is_active)
        return {
            'component': 'robot_registry',
            'status': 'healthy',
            'total_robots': total_robots,
            'active_robots': active_robots,
            'timestamp': datetime.now()
        }

    def register_robot(self, robot_name: str, robot_type: str, **fields: Any) -> str:
        """
        Register a new robot with the fleet.

        Args:
            robot_name: Display name
            robot_type: Type tag such as AGV or ARM
            **fields: Any other Robot field (battery_level, current_zone, ...)

        Returns:
            The generated (or supplied) robot id

        Raises:
            FleetValidationError: if a field is out of range
            ConflictError: if the robot id is already registered
        """
        try:
            robot = Robot(robot_name=robot_name, robot_type=robot_type, **fields)
        except ValidationError as e:
            raise FleetValidationError(f"Invalid robot record: {e}") from e

        with self._lock:
            if robot.robot_id in self._robots:
                raise ConflictError(f"Robot {robot.robot_id} already registered")
            self._committer.commit(ChangeSet(robots=[robot]))

        self._system_log.emit(LogLevel.INFO, self.component_name,
                              f"Robot {robot.robot_name} registered as {robot.robot_type}",
                              robot_id=robot.robot_id,
                              data={'status': robot.status.value, 'battery_level': robot.battery_level})
        return robot.robot_id

    def get_robot(self, robot_id: str) -> Robot:
        """
        Get a copy of a robot record.

        Raises:
            NotFoundError: if the robot is not registered
        """
        with self._lock:
            robot = self._robots.get(robot_id)
            if robot is None:
                raise NotFoundError("Robot", robot_id)
            return robot.model_copy(deep=True)

    def has_robot(self, robot_id: str) -> bool:
        with self._lock:
            return robot_id in self._robots

    def list_robots(self, status: Optional[RobotStatus] = None, zone: Optional[str] = None,
                    active_only: bool = False) -> List[Robot]:
        """List robots in registration order, optionally filtered."""
        with self._lock:
            return [
                robot.model_copy(deep=True) for robot in self._robots.values()
                if (status is None or robot.status == status)
                and (zone is None or robot.current_zone == zone)
                and (not active_only or robot.is_active)
            ]

    def update_telemetry(self, robot_id: str, battery_level: Optional[int] = None,
                         latitude: Optional[float] = None, longitude: Optional[float] = None,
                         zone: Optional[str] = None, distance_delta_km: float = 0.0) -> Robot:
        """
        Record a telemetry report.

        Raises:
            NotFoundError: if the robot is not registered
            FleetValidationError: if battery or coordinates are out of range
        """
        with self._lock:
            current = self.get_robot(robot_id)
            updated = self.prepare_telemetry(current, battery_level, latitude, longitude,
                                             zone, distance_delta_km)
            self._committer.commit(ChangeSet(robots=[updated]))
            return updated.model_copy(deep=True)

    def prepare_telemetry(self, robot: Robot, battery_level: Optional[int] = None,
                          latitude: Optional[float] = None, longitude: Optional[float] = None,
                          zone: Optional[str] = None, distance_delta_km: float = 0.0) -> Robot:
        """Build the validated post-telemetry record without committing it."""
        if distance_delta_km < 0:
            raise FleetValidationError(f"distance_delta_km must not be negative, got {distance_delta_km}")

        updates: Dict[str, Any] = {'updated_at': datetime.now()}
        if battery_level is not None:
            updates['battery_level'] = battery_level
        if latitude is not None:
            updates['latitude'] = latitude
        if longitude is not None:
            updates['longitude'] = longitude
        if zone is not None:
            updates['current_zone'] = zone
        if distance_delta_km:
            updates['total_distance_km'] = robot.total_distance_km + distance_delta_km

        try:
            return Robot.model_validate({**robot.model_dump(), **updates})
        except ValidationError as e:
            raise FleetValidationError(f"Invalid telemetry for robot {robot.robot_id}: {e}") from e

    def set_status(self, robot_id: str, new_status: RobotStatus, reason: Optional[str] = None) -> Robot:
        """
        Move a robot to a new status.

        Raises:
            NotFoundError: if the robot is not registered
            InvalidTransitionError: if the state machine forbids the move or
                the robot holds an active task
        """
        with self._lock:
            current = self.get_robot(robot_id)
            self._refuse_if_busy(current, new_status)
            updated = self.prepare_status(current, new_status)
            self._committer.commit(ChangeSet(robots=[updated]))
        self.log_transition(current, updated, reason)
        return updated

    def prepare_status(self, robot: Robot, new_status: RobotStatus,
                       now: Optional[datetime] = None) -> Robot:
        """
        Validate a status transition and build the resulting record.

        The input record is left untouched.
        """
        try:
            new_status = RobotStatus(new_status)
        except ValueError as e:
            raise FleetValidationError(f"Unknown robot status: {new_status}") from e
        if new_status not in ROBOT_TRANSITIONS[robot.status]:
            raise InvalidTransitionError("Robot", robot.robot_id, robot.status, new_status)

        if (robot.status == RobotStatus.CHARGING and new_status == RobotStatus.IDLE
                and robot.battery_level < self._charge_complete_level):
            raise InvalidTransitionError(
                "Robot", robot.robot_id, robot.status, new_status,
                detail=f"battery {robot.battery_level}% below {self._charge_complete_level}%"
            )

        now = now or datetime.now()
        updates: Dict[str, Any] = {'status': new_status, 'updated_at': now}
        if new_status == RobotStatus.ERROR:
            updates['error_count'] = robot.error_count + 1
            updates['last_error_timestamp'] = now
        return robot.model_copy(update=updates)

    def log_transition(self, before: Robot, after: Robot, reason: Optional[str] = None) -> None:
        """Append the system log entry for a committed status transition."""
        if before.status == after.status:
            return
        level = LogLevel.ERROR if after.status == RobotStatus.ERROR else LogLevel.INFO
        message = f"Robot {after.robot_id} {before.status.value} -> {after.status.value}"
        if reason:
            message = f"{message} ({reason})"
        self._system_log.emit(level, self.component_name, message, robot_id=after.robot_id,
                              data={'from': before.status.value, 'to': after.status.value,
                                    'reason': reason})

    def deactivate(self, robot_id: str) -> Robot:
        """
        Soft-delete a robot. Deactivated robots are never eligible.

        Raises:
            NotFoundError: if the robot is not registered
            InvalidTransitionError: if the robot holds an active task
        """
        with self._lock:
            current = self.get_robot(robot_id)
            if not current.is_active:
                return current
            self._refuse_if_busy(current, "INACTIVE")
            updated = self.prepare_deactivation(current)
            self._committer.commit(ChangeSet(robots=[updated]))
        self.log_deactivation(updated)
        return updated

    def prepare_deactivation(self, robot: Robot) -> Robot:
        return robot.model_copy(update={'is_active': False, 'updated_at': datetime.now()})

    def log_deactivation(self, robot: Robot) -> None:
        self._system_log.emit(LogLevel.WARNING, self.component_name,
                              f"Robot {robot.robot_id} deactivated", robot_id=robot.robot_id)

    def default_criteria(self, zone: Optional[str] = None,
                         robot_type: Optional[str] = None) -> EligibilityCriteria:
        return EligibilityCriteria(min_battery=self._min_battery, zone=zone, robot_type=robot_type)

    @staticmethod
    def is_eligible(robot: Robot, criteria: EligibilityCriteria) -> bool:
        """Check if a robot can take a new task under the given criteria."""
        return (robot.is_active
                and robot.status == RobotStatus.IDLE
                and robot.battery_level > criteria.min_battery
                and (criteria.zone is None or robot.current_zone == criteria.zone)
                and (criteria.robot_type is None or robot.robot_type == criteria.robot_type))

    def list_eligible(self, criteria: Optional[EligibilityCriteria] = None) -> List[Robot]:
        """
        Get robots available for new tasks, in registration order.

        Args:
            criteria: Eligibility filter, defaults to the configured minimum battery
        """
        criteria = criteria or self.default_criteria()
        with self._lock:
            return [robot.model_copy(deep=True) for robot in self._robots.values()
                    if self.is_eligible(robot, criteria)]

    def get_fleet_status(self) -> Dict[str, Any]:
        """
        Get overall fleet status summary.

        Returns:
            Dictionary with fleet statistics
        """
        with self._lock:
            robots = list(self._robots.values())

        status_counts: Dict[str, int] = {}
        zone_counts: Dict[str, int] = {}
        for robot in robots:
            if not robot.is_active:
                continue
            status_counts[robot.status.value] = status_counts.get(robot.status.value, 0) + 1
            if robot.current_zone:
                zone_counts[robot.current_zone] = zone_counts.get(robot.current_zone, 0) + 1

        criteria = self.default_criteria()
        return {
            'total_robots': len(robots),
            'active_robots': sum(1 for r in robots if r.is_active),
            'eligible_robots': sum(1 for r in robots if self.is_eligible(r, criteria)),
            'low_battery_robots': [r.robot_id for r in robots
                                   if r.is_active and r.battery_level < self._low_battery_threshold],
            'status_distribution': status_counts,
            'zone_distribution': zone_counts,
            'timestamp': datetime.now()
        }

    def _install(self, robot: Robot) -> Optional[Robot]:
        previous = self._robots.get(robot.robot_id)
        self._robots[robot.robot_id] = robot
        return previous
