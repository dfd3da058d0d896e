"""
Tests for RobotRegistry.

Tests robot registration, telemetry, the status state machine and
eligibility filtering.
"""

import pytest
from datetime import datetime

from core.data_models import RobotStatus, LogLevel, EligibilityCriteria
from core.errors import NotFoundError, InvalidTransitionError, FleetValidationError, ConflictError
from fleet_coordinator.robot_registry import RobotRegistry, ROBOT_TRANSITIONS
from fleet_coordinator.state_store import StateCommitter
from fleet_coordinator.system_log import SystemLog


class TestRobotRegistry:
    """Test suite for RobotRegistry functionality."""

    @pytest.fixture
    def system_log(self):
        return SystemLog()

    @pytest.fixture
    def registry(self, system_log):
        """Create a RobotRegistry instance for testing."""
        config = {
            'min_battery_for_eligibility': 20,
            'charge_complete_level': 80,
            'low_battery_threshold': 30
        }
        return RobotRegistry(StateCommitter(), system_log, config)

    @pytest.fixture
    def robot_id(self, registry):
        """Register a sample robot."""
        return registry.register_robot(
            "Warehouse Bot 1", "AGV",
            battery_level=85, latitude=10.8, longitude=106.8,
            current_zone="WAREHOUSE_A", ip_address="192.168.1.101"
        )

    @pytest.mark.asyncio
    async def test_health_check(self, registry, robot_id):
        health = await registry.health_check()

        assert health['component'] == 'robot_registry'
        assert health['status'] == 'healthy'
        assert health['total_robots'] == 1
        assert health['active_robots'] == 1

    def test_register_robot(self, registry, robot_id, system_log):
        """Test robot registration stores the record and logs it."""
        robot = registry.get_robot(robot_id)

        assert robot.robot_name == "Warehouse Bot 1"
        assert robot.status == RobotStatus.IDLE
        assert robot.battery_level == 85
        assert robot.current_zone == "WAREHOUSE_A"
        entries = system_log.list_entries(robot_id=robot_id)
        assert len(entries) == 1
        assert entries[0].source_service == 'robot_registry'

    def test_register_invalid_robot(self, registry):
        with pytest.raises(FleetValidationError):
            registry.register_robot("Bad Bot", "AGV", battery_level=150)
        assert registry.list_robots() == []

    def test_register_duplicate_id(self, registry, robot_id):
        with pytest.raises(ConflictError):
            registry.register_robot("Copy", "AGV", robot_id=robot_id)

    def test_get_unknown_robot(self, registry):
        with pytest.raises(NotFoundError):
            registry.get_robot("missing")

    def test_returned_records_are_copies(self, registry, robot_id):
        robot = registry.get_robot(robot_id)
        robot.battery_level = 1
        assert registry.get_robot(robot_id).battery_level == 85

    def test_update_telemetry(self, registry, robot_id):
        """Test telemetry updates battery, position, zone and distance."""
        before = registry.get_robot(robot_id)
        robot = registry.update_telemetry(robot_id, battery_level=60, latitude=10.85, longitude=106.85,
                                          zone="LOADING_DOCK", distance_delta_km=1.5)

        assert robot.battery_level == 60
        assert robot.position() == (10.85, 106.85)
        assert robot.current_zone == "LOADING_DOCK"
        assert robot.total_distance_km == 1.5
        assert robot.updated_at >= before.updated_at
        assert robot.status == RobotStatus.IDLE

    def test_update_telemetry_unknown_robot(self, registry):
        with pytest.raises(NotFoundError):
            registry.update_telemetry("missing", battery_level=50)

    def test_update_telemetry_invalid_values(self, registry, robot_id):
        """Test out-of-range telemetry is rejected without mutation."""
        with pytest.raises(FleetValidationError):
            registry.update_telemetry(robot_id, battery_level=120)
        with pytest.raises(FleetValidationError):
            registry.update_telemetry(robot_id, distance_delta_km=-1.0)

        assert registry.get_robot(robot_id).battery_level == 85

    def test_valid_status_walk(self, registry, robot_id):
        """Test a full walk through the state machine."""
        for status in (RobotStatus.RUNNING, RobotStatus.ERROR, RobotStatus.MAINTENANCE,
                       RobotStatus.IDLE, RobotStatus.CHARGING):
            assert registry.set_status(robot_id, status).status == status

    @pytest.mark.parametrize("start,target", [
        (RobotStatus.IDLE, RobotStatus.ERROR),
        (RobotStatus.IDLE, RobotStatus.IDLE),
        (RobotStatus.RUNNING, RobotStatus.CHARGING),
        (RobotStatus.RUNNING, RobotStatus.MAINTENANCE),
        (RobotStatus.MAINTENANCE, RobotStatus.RUNNING),
        (RobotStatus.ERROR, RobotStatus.RUNNING),
    ])
    def test_invalid_transition_rejected(self, registry, start, target):
        """Test invalid transitions raise and leave state unchanged."""
        robot_id = registry.register_robot("r", "AGV", status=start)
        before = registry.get_robot(robot_id)

        with pytest.raises(InvalidTransitionError):
            registry.set_status(robot_id, target)

        after = registry.get_robot(robot_id)
        assert after.status == start
        assert after.updated_at == before.updated_at
        assert after.error_count == before.error_count

    def test_transition_table_covers_all_statuses(self):
        assert set(ROBOT_TRANSITIONS) == set(RobotStatus)
        for status, targets in ROBOT_TRANSITIONS.items():
            assert status not in targets

    def test_error_increments_counter(self, registry, robot_id):
        """Test entering ERROR stamps the error fields."""
        registry.set_status(robot_id, RobotStatus.RUNNING)
        robot = registry.set_status(robot_id, RobotStatus.ERROR, "motor fault")

        assert robot.error_count == 1
        assert isinstance(robot.last_error_timestamp, datetime)

    def test_transition_is_logged(self, registry, robot_id, system_log):
        registry.set_status(robot_id, RobotStatus.RUNNING)
        registry.set_status(robot_id, RobotStatus.ERROR, "motor fault")

        latest = system_log.list_entries(robot_id=robot_id)[0]
        assert latest.log_level == LogLevel.ERROR
        assert "motor fault" in latest.message
        assert latest.additional_data['from'] == 'RUNNING'

    def test_charging_release_requires_charge(self, registry):
        """Test CHARGING -> IDLE is refused below the charge-complete level."""
        robot_id = registry.register_robot("r", "AGV", status=RobotStatus.CHARGING, battery_level=50)

        with pytest.raises(InvalidTransitionError):
            registry.set_status(robot_id, RobotStatus.IDLE)

        registry.update_telemetry(robot_id, battery_level=80)
        assert registry.set_status(robot_id, RobotStatus.IDLE).status == RobotStatus.IDLE

    def test_unknown_status_value(self, registry, robot_id):
        with pytest.raises(FleetValidationError):
            registry.set_status(robot_id, "FLYING")

    def test_deactivate(self, registry, robot_id):
        """Test deactivation is a soft delete and idempotent."""
        robot = registry.deactivate(robot_id)
        assert not robot.is_active
        assert registry.get_robot(robot_id).robot_name == "Warehouse Bot 1"

        again = registry.deactivate(robot_id)
        assert not again.is_active
        assert registry.list_eligible() == []

    def test_list_robots_filters(self, registry, robot_id):
        other = registry.register_robot("Arm", "ARM", current_zone="PACKAGING_ZONE", status=RobotStatus.RUNNING)
        registry.deactivate(other)

        assert [r.robot_id for r in registry.list_robots()] == [robot_id, other]
        assert [r.robot_id for r in registry.list_robots(status=RobotStatus.RUNNING)] == [other]
        assert [r.robot_id for r in registry.list_robots(zone="WAREHOUSE_A")] == [robot_id]
        assert [r.robot_id for r in registry.list_robots(active_only=True)] == [robot_id]

    def test_eligibility(self, registry, robot_id):
        """Test eligibility rules: active, IDLE, battery strictly above minimum."""
        assert [r.robot_id for r in registry.list_eligible()] == [robot_id]

        registry.update_telemetry(robot_id, battery_level=20)
        assert registry.list_eligible() == []

        registry.update_telemetry(robot_id, battery_level=21)
        assert len(registry.list_eligible()) == 1

        registry.set_status(robot_id, RobotStatus.MAINTENANCE)
        assert registry.list_eligible() == []

    def test_eligibility_zone_and_type(self, registry, robot_id):
        registry.register_robot("Arm", "ARM", current_zone="PACKAGING_ZONE")

        by_zone = registry.list_eligible(EligibilityCriteria(min_battery=20, zone="WAREHOUSE_A"))
        by_type = registry.list_eligible(EligibilityCriteria(min_battery=20, robot_type="ARM"))

        assert [r.robot_id for r in by_zone] == [robot_id]
        assert [r.robot_name for r in by_type] == ["Arm"]

    def test_fleet_status(self, registry, robot_id):
        registry.register_robot("Low", "AGV", battery_level=10, current_zone="WAREHOUSE_A")
        registry.register_robot("Charging", "AGV", status=RobotStatus.CHARGING, current_zone="LOADING_DOCK")

        status = registry.get_fleet_status()

        assert status['total_robots'] == 3
        assert status['active_robots'] == 3
        assert status['eligible_robots'] == 1
        assert len(status['low_battery_robots']) == 1
        assert status['status_distribution'] == {'IDLE': 2, 'CHARGING': 1}
        assert status['zone_distribution'] == {'WAREHOUSE_A': 2, 'LOADING_DOCK': 1}
