"""
Data models for the fleet coordination system.

Defines the records held for robots, tasks, navigation paths, perception
events and system logs, with Pydantic validation.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Tuple, List

from pydantic import BaseModel, Field, ConfigDict, IPvAnyAddress, field_validator


def new_id() -> str:
    """Generate a globally unique opaque identifier."""
    return str(uuid.uuid4())


class RobotStatus(str, Enum):
    """Valid robot status values."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    ERROR = "ERROR"
    MAINTENANCE = "MAINTENANCE"
    CHARGING = "CHARGING"


class TaskStatus(str, Enum):
    """Valid task status values."""
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PathStatus(str, Enum):
    """Valid navigation path status values."""
    PLANNED = "PLANNED"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class LogLevel(str, Enum):
    """Severity levels for system log entries."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})
ACTIVE_TASK_STATUSES = frozenset({TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS})
TERMINAL_PATH_STATUSES = frozenset({PathStatus.COMPLETED, PathStatus.FAILED})


class Robot(BaseModel):
    """Authoritative state of a single robot."""
    robot_id: str = Field(default_factory=new_id, min_length=1, description="Unique robot identifier")
    robot_name: str = Field(..., min_length=1, max_length=100, description="Display name")
    robot_type: str = Field(..., min_length=1, max_length=50, description="Type tag, e.g. AGV or ARM")
    status: RobotStatus = Field(default=RobotStatus.IDLE, description="Current operational status")
    battery_level: int = Field(default=100, ge=0, le=100, description="Battery level percentage")
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, description="Last known latitude")
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, description="Last known longitude")
    current_zone: Optional[str] = Field(None, max_length=50, description="Last known zone label")
    ip_address: Optional[IPvAnyAddress] = Field(None, description="Network address")
    total_distance_km: float = Field(default=0.0, ge=0.0, description="Cumulative distance traveled")
    error_count: int = Field(default=0, ge=0, description="Number of times the robot entered ERROR")
    last_error_timestamp: Optional[datetime] = Field(None, description="When the robot last entered ERROR")
    is_active: bool = Field(default=True, description="False once the robot is deactivated")
    created_at: datetime = Field(default_factory=datetime.now, description="Registration timestamp")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last mutation timestamp")

    model_config = ConfigDict()

    def has_position(self) -> bool:
        """Check if the robot has reported coordinates."""
        return self.latitude is not None and self.longitude is not None

    def position(self) -> Optional[Tuple[float, float]]:
        """Return (latitude, longitude) or None when unknown."""
        if not self.has_position():
            return None
        return (self.latitude, self.longitude)


class DetectedObject(BaseModel):
    """A single object found in a detection frame."""
    label: str = Field(..., alias="class", min_length=1, description="Class label")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Detector confidence score")
    bbox: List[float] = Field(..., min_length=4, max_length=4, description="Bounding box [x1, y1, x2, y2]")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Detection(BaseModel):
    """Immutable perception event recorded against a robot."""
    detection_id: str = Field(default_factory=new_id, min_length=1)
    robot_id: Optional[str] = Field(None, description="Robot that produced the frame")
    image_path: str = Field(..., min_length=1, description="Reference to the source image")
    detected_objects: List[DetectedObject] = Field(default_factory=list)
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    processing_time_ms: Optional[int] = Field(None, ge=0)
    model_version: str = Field(..., min_length=1, max_length=20)
    detection_timestamp: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(frozen=True)

    def objects_above_threshold(self) -> List[DetectedObject]:
        """Objects whose confidence meets the recorded threshold."""
        return [obj for obj in self.detected_objects if obj.confidence >= self.confidence_threshold]


class Waypoint(BaseModel):
    """Intermediate point on a navigation path."""
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class NavigationPath(BaseModel):
    """Planned or executed route of one robot."""
    path_id: str = Field(default_factory=new_id, min_length=1)
    robot_id: str = Field(..., min_length=1)
    task_id: Optional[str] = Field(None, description="Task this path was created for")
    start_lat: float = Field(..., ge=-90.0, le=90.0)
    start_lng: float = Field(..., ge=-180.0, le=180.0)
    end_lat: float = Field(..., ge=-90.0, le=90.0)
    end_lng: float = Field(..., ge=-180.0, le=180.0)
    waypoints: List[Waypoint] = Field(default_factory=list)
    path_status: PathStatus = Field(default=PathStatus.PLANNED)
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        """Check if the path reached COMPLETED or FAILED."""
        return self.path_status in TERMINAL_PATH_STATUSES


class Task(BaseModel):
    """Unit of work queued for the robot fleet."""
    task_id: str = Field(default_factory=new_id, min_length=1, description="Unique task identifier")
    robot_id: Optional[str] = Field(None, description="Robot currently holding the task")
    task_type: str = Field(..., min_length=1, max_length=50, description="Type tag, e.g. MOVE_TO_LOCATION")
    task_data: Dict[str, Any] = Field(default_factory=dict, description="Opaque structured payload")
    priority: int = Field(default=5, ge=1, le=10, description="Priority, 10 is most urgent")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Current task status")
    error_message: Optional[str] = Field(None, description="Failure detail, set only on FAILED")
    path_id: Optional[str] = Field(None, description="Navigation path created at assignment")
    created_at: datetime = Field(default_factory=datetime.now, description="Task creation timestamp")
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator('task_data', mode='before')
    @classmethod
    def default_task_data(cls, v):
        """Treat a null payload as empty."""
        return {} if v is None else v

    def is_terminal(self) -> bool:
        """Check if task is in a terminal state."""
        return self.status in TERMINAL_TASK_STATUSES

    def is_active(self) -> bool:
        """Check if a robot is currently holding the task."""
        return self.status in ACTIVE_TASK_STATUSES

    def target_zone(self) -> Optional[str]:
        return self.task_data.get('target_zone')

    def required_robot_type(self) -> Optional[str]:
        return self.task_data.get('robot_type')

    def target_position(self) -> Optional[Tuple[float, float]]:
        """Return the payload's (target_lat, target_lng) when both are present."""
        lat = self.task_data.get('target_lat')
        lng = self.task_data.get('target_lng')
        if lat is None or lng is None:
            return None
        return (float(lat), float(lng))


class SystemLogEntry(BaseModel):
    """Append-only observability record."""
    log_id: int = Field(..., ge=1)
    log_level: LogLevel = Field(default=LogLevel.INFO)
    source_service: str = Field(..., min_length=1, max_length=50)
    robot_id: Optional[str] = None
    message: str = Field(..., min_length=1)
    additional_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class EligibilityCriteria(BaseModel):
    """Filter applied when looking for robots that can take a task."""
    min_battery: int = Field(default=0, ge=0, le=100, description="Battery must be strictly above this")
    zone: Optional[str] = None
    robot_type: Optional[str] = None
