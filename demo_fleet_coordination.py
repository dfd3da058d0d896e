#!/usr/bin/env python3
"""
Demonstration script for the fleet coordination engine.

Loads the reference warehouse fleet, then walks a task through assignment,
navigation and completion, a robot failure and a deactivation.
"""

import asyncio
import logging

from config import ConfigManager
from core.data_models import RobotStatus, TaskStatus, PathStatus
from core.errors import FleetCoordinationError
from fleet_coordinator import CoordinationEngine, load_seed_fleet


async def demo_fleet_coordination():
    """Demonstrate fleet coordination functionality."""
    print("=== Fleet Coordination Demo ===\n")

    config_manager = ConfigManager("config")
    if not config_manager.load_config():
        print("   ✗ Could not load configuration")
        return
    config_manager.configure_logging()
    logging.getLogger().setLevel(logging.WARNING)

    engine = CoordinationEngine.from_settings(config_manager.system_settings)
    events = []
    engine.add_listener(events.append)

    print("1. Starting coordination engine...")
    await engine.safe_start()
    print("   ✓ Engine started with background scheduling\n")

    print("2. Loading reference fleet...")
    seed = load_seed_fleet(engine)
    for name, robot_id in seed['robots'].items():
        robot = engine.get_robot(robot_id)
        print(f"   ✓ {name} ({robot.robot_type}) - {robot.status.value}, battery {robot.battery_level}%")
    print(f"   ✓ Detection {seed['detection'].detection_id[:8]} with "
          f"{len(seed['detection'].detected_objects)} objects\n")

    task = engine.get_task(seed['task'].task_id)
    bot_1 = seed['robots']['Warehouse Bot 1']
    bot_2 = seed['robots']['Warehouse Bot 2']

    print("3. Seed task assignment:")
    print(f"   Task {task.task_id[:8]} status: {task.status.value}")
    print(f"   Assigned robot: {engine.get_robot(task.robot_id).robot_name}")
    path = engine.get_path(task.path_id)
    print(f"   Path: ({path.start_lat}, {path.start_lng}) -> ({path.end_lat}, {path.end_lng}) "
          f"[{path.path_status.value}]\n")

    print("4. Robot drives the path...")
    engine.advance_path(path.path_id, PathStatus.EXECUTING)
    print(f"   Task status: {engine.get_task(task.task_id).status.value}")
    engine.advance_path(path.path_id, PathStatus.COMPLETED)
    task = engine.get_task(task.task_id)
    print(f"   Task status: {task.status.value}, completed at {task.completed_at:%H:%M:%S}")
    engine.update_telemetry(bot_1, latitude=10.85, longitude=106.85, zone='LOADING_DOCK', distance_delta_km=5.6)
    print(f"   Robot status: {engine.get_robot(bot_1).status.value}\n")

    print("5. Priority ordering with one eligible robot...")
    engine.set_robot_status(bot_1, RobotStatus.MAINTENANCE, "inspection")
    low = engine.submit_task('INSPECT_SHELF', {'target_zone': 'WAREHOUSE_A'}, priority=3)
    high = engine.submit_task('MOVE_TO_LOCATION', {'target_zone': 'LOADING_DOCK'}, priority=8)
    print(f"   Pending order: {[t.priority for t in engine.peek_pending_tasks()]}")
    engine.set_robot_status(bot_1, RobotStatus.IDLE, "inspection done")
    print(f"   Priority 8 task: {engine.get_task(high.task_id).status.value}")
    print(f"   Priority 3 task: {engine.get_task(low.task_id).status.value}\n")

    print("6. Robot failure mid-task...")
    engine.report_progress(high.task_id, TaskStatus.IN_PROGRESS)
    engine.set_robot_status(bot_1, RobotStatus.ERROR, "drive motor fault")
    failed = engine.get_task(high.task_id)
    print(f"   Task status: {failed.status.value} ({failed.error_message})")
    print(f"   Robot status: {engine.get_robot(bot_1).status.value}, "
          f"errors: {engine.get_robot(bot_1).error_count}")
    try:
        engine.report_progress(high.task_id, TaskStatus.FAILED, "duplicate report")
    except FleetCoordinationError as e:
        print(f"   ✓ Repeated report rejected: {e.code}\n")

    print("7. Charging robot releases itself...")
    engine.update_telemetry(bot_2, battery_level=95)
    print(f"   Warehouse Bot 2 status: {engine.get_robot(bot_2).status.value}")
    print(f"   Priority 3 task: {engine.get_task(low.task_id).status.value}\n")

    print("8. Deactivating a robot holding a task...")
    engine.deactivate_robot(bot_2)
    print(f"   Priority 3 task: {engine.get_task(low.task_id).status.value}")
    print(f"   Eligible robots: {[r.robot_name for r in engine.list_eligible_robots()]}\n")

    print("9. Statistics:")
    stats = engine.get_statistics()
    print(f"   Fleet: {stats['fleet']['status_distribution']}")
    print(f"   Tasks: {stats['tasks']['status_distribution']}")
    print(f"   Events published: {len(events)}")
    print(f"   System log entries: {len(engine.list_logs())}\n")

    print("10. Stopping coordination engine...")
    await engine.safe_stop()
    print("   ✓ Engine stopped\n")

    print("=== Demo completed successfully! ===")


if __name__ == "__main__":
    asyncio.run(demo_fleet_coordination())
