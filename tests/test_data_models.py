"""
Unit tests for core data models.

Tests validation and helper logic for robots, tasks, paths and detections.
"""

import pytest
from datetime import datetime
from ipaddress import IPv4Address
from pydantic import ValidationError

from core.data_models import (
    Robot, Task, NavigationPath, Waypoint, Detection, DetectedObject, SystemLogEntry,
    EligibilityCriteria, RobotStatus, TaskStatus, PathStatus, LogLevel, new_id
)


class TestRobot:
    """Test cases for Robot model."""

    def test_defaults(self):
        """Test a minimal robot gets sensible defaults."""
        robot = Robot(robot_name="Warehouse Bot 1", robot_type="AGV")

        assert robot.status == RobotStatus.IDLE
        assert robot.battery_level == 100
        assert robot.is_active
        assert robot.error_count == 0
        assert robot.total_distance_km == 0.0
        assert robot.last_error_timestamp is None
        assert len(robot.robot_id) == 36

    def test_battery_bounds(self):
        """Test battery level must stay within 0-100."""
        Robot(robot_name="r", robot_type="AGV", battery_level=0)
        Robot(robot_name="r", robot_type="AGV", battery_level=100)

        with pytest.raises(ValidationError):
            Robot(robot_name="r", robot_type="AGV", battery_level=101)
        with pytest.raises(ValidationError):
            Robot(robot_name="r", robot_type="AGV", battery_level=-1)

    def test_coordinate_bounds(self):
        with pytest.raises(ValidationError):
            Robot(robot_name="r", robot_type="AGV", latitude=91.0)
        with pytest.raises(ValidationError):
            Robot(robot_name="r", robot_type="AGV", longitude=-181.0)

    def test_ip_address_validation(self):
        """Test network address is parsed and validated."""
        robot = Robot(robot_name="r", robot_type="AGV", ip_address="192.168.1.101")
        assert robot.ip_address == IPv4Address("192.168.1.101")

        with pytest.raises(ValidationError):
            Robot(robot_name="r", robot_type="AGV", ip_address="not-an-address")

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            Robot(robot_name="r", robot_type="AGV", status="FLYING")

    def test_position(self):
        """Test position is only reported when both coordinates are known."""
        robot = Robot(robot_name="r", robot_type="AGV", latitude=10.8)
        assert not robot.has_position()
        assert robot.position() is None

        robot = Robot(robot_name="r", robot_type="AGV", latitude=10.8, longitude=106.8)
        assert robot.position() == (10.8, 106.8)


class TestTask:
    """Test cases for Task model."""

    def test_defaults(self):
        task = Task(task_type="MOVE_TO_LOCATION")

        assert task.status == TaskStatus.PENDING
        assert task.priority == 5
        assert task.task_data == {}
        assert task.robot_id is None
        assert task.assigned_at is None
        assert task.completed_at is None
        assert not task.is_terminal()
        assert not task.is_active()

    def test_priority_bounds(self):
        """Test priority must be within 1-10."""
        Task(task_type="T", priority=1)
        Task(task_type="T", priority=10)

        with pytest.raises(ValidationError):
            Task(task_type="T", priority=0)
        with pytest.raises(ValidationError):
            Task(task_type="T", priority=11)

    def test_null_payload_becomes_empty(self):
        task = Task(task_type="T", task_data=None)
        assert task.task_data == {}

    def test_payload_helpers(self):
        """Test interpreted payload fields."""
        task = Task(task_type="MOVE_TO_LOCATION", task_data={
            'target_zone': 'LOADING_DOCK', 'target_lat': 10.85, 'target_lng': 106.85, 'robot_type': 'AGV'
        })

        assert task.target_zone() == 'LOADING_DOCK'
        assert task.required_robot_type() == 'AGV'
        assert task.target_position() == (10.85, 106.85)

    def test_target_position_needs_both_coordinates(self):
        task = Task(task_type="T", task_data={'target_lat': 10.85})
        assert task.target_position() is None

    def test_status_groups(self):
        for status in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED):
            assert Task(task_type="T", status=status).is_terminal()
        for status in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS):
            task = Task(task_type="T", status=status)
            assert task.is_active()
            assert not task.is_terminal()


class TestNavigationPath:
    """Test cases for NavigationPath and Waypoint models."""

    def test_creation(self):
        path = NavigationPath(
            robot_id="robot_1", start_lat=10.8, start_lng=106.8, end_lat=10.85, end_lng=106.85,
            waypoints=[Waypoint(latitude=10.82, longitude=106.82)]
        )

        assert path.path_status == PathStatus.PLANNED
        assert path.completed_at is None
        assert len(path.waypoints) == 1
        assert not path.is_terminal()

    def test_terminal_statuses(self):
        for status, terminal in ((PathStatus.PLANNED, False), (PathStatus.EXECUTING, False),
                                 (PathStatus.COMPLETED, True), (PathStatus.FAILED, True)):
            path = NavigationPath(robot_id="r", start_lat=0, start_lng=0, end_lat=0, end_lng=0,
                                  path_status=status)
            assert path.is_terminal() is terminal

    def test_waypoint_bounds(self):
        with pytest.raises(ValidationError):
            Waypoint(latitude=100.0, longitude=0.0)


class TestDetection:
    """Test cases for Detection and DetectedObject models."""

    def test_object_accepts_class_key(self):
        """Test objects can be built from the stored JSON shape."""
        obj = DetectedObject.model_validate({'class': 'pallet', 'confidence': 0.95, 'bbox': [100, 150, 300, 400]})

        assert obj.label == 'pallet'
        assert obj.bbox == [100.0, 150.0, 300.0, 400.0]
        assert obj.model_dump(by_alias=True)['class'] == 'pallet'

    def test_object_validation(self):
        with pytest.raises(ValidationError):
            DetectedObject(label='box', confidence=1.5, bbox=[0, 0, 1, 1])
        with pytest.raises(ValidationError):
            DetectedObject(label='box', confidence=0.5, bbox=[0, 0, 1])

    def test_objects_above_threshold(self):
        detection = Detection(
            robot_id="robot_1",
            image_path="/images/scan.jpg",
            model_version="v1.2.0",
            confidence_threshold=0.9,
            detected_objects=[
                DetectedObject(label='pallet', confidence=0.95, bbox=[0, 0, 1, 1]),
                DetectedObject(label='box', confidence=0.87, bbox=[0, 0, 1, 1]),
            ]
        )

        assert [obj.label for obj in detection.objects_above_threshold()] == ['pallet']

    def test_detection_is_immutable(self):
        detection = Detection(robot_id="r", image_path="/images/scan.jpg", model_version="v1")
        with pytest.raises(ValidationError):
            detection.image_path = "/images/other.jpg"

    def test_model_version_length(self):
        with pytest.raises(ValidationError):
            Detection(robot_id="r", image_path="/i.jpg", model_version="v" * 21)


class TestSupportingModels:
    """Test cases for log entries, criteria and identifiers."""

    def test_system_log_entry(self):
        entry = SystemLogEntry(log_id=1, source_service="robot_registry", message="Robot registered")

        assert entry.log_level == LogLevel.INFO
        assert entry.additional_data == {}
        assert isinstance(entry.created_at, datetime)

    def test_eligibility_criteria_bounds(self):
        with pytest.raises(ValidationError):
            EligibilityCriteria(min_battery=150)

    def test_new_id_unique(self):
        assert len({new_id() for _ in range(100)}) == 100
