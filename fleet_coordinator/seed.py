"""
Reference fleet used by the demo script and tests.

Three robots, one sample detection and one sample task, as shipped with the
warehouse database schema.
"""

from typing import Any, Dict

from core.data_models import RobotStatus


SEED_ROBOTS = [
    {
        'robot_name': 'Warehouse Bot 1',
        'robot_type': 'AGV',
        'battery_level': 85,
        'latitude': 10.8,
        'longitude': 106.8,
        'current_zone': 'WAREHOUSE_A',
        'ip_address': '192.168.1.101',
        'status': RobotStatus.IDLE,
    },
    {
        'robot_name': 'Warehouse Bot 2',
        'robot_type': 'AGV',
        'battery_level': 92,
        'latitude': 10.85,
        'longitude': 106.85,
        'current_zone': 'LOADING_DOCK',
        'ip_address': '192.168.1.102',
        'status': RobotStatus.CHARGING,
    },
    {
        'robot_name': 'Packaging Arm 1',
        'robot_type': 'ARM',
        'battery_level': 100,
        'latitude': 10.82,
        'longitude': 106.83,
        'current_zone': 'PACKAGING_ZONE',
        'ip_address': '192.168.1.103',
        'status': RobotStatus.RUNNING,
    },
]

SEED_DETECTION = {
    'image_path': '/images/warehouse_scan_001.jpg',
    'detected_objects': [
        {'class': 'pallet', 'confidence': 0.95, 'bbox': [100, 150, 300, 400]},
        {'class': 'box', 'confidence': 0.87, 'bbox': [350, 200, 500, 350]},
    ],
    'model_version': 'v1.2.0',
}

SEED_TASK = {
    'task_type': 'MOVE_TO_LOCATION',
    'task_data': {'target_zone': 'LOADING_DOCK', 'target_lat': 10.85, 'target_lng': 106.85},
    'priority': 8,
}


def load_seed_fleet(engine) -> Dict[str, Any]:
    """
    Load the reference fleet into a coordination engine.

    The detection is recorded against Warehouse Bot 1 and the task is
    submitted last, so it is matched by the triggered scheduling pass.

    Returns:
        Dictionary with 'robots' (name -> id), 'detection' and 'task'
    """
    robots = {}
    for robot in SEED_ROBOTS:
        fields = dict(robot)
        name = fields.pop('robot_name')
        robot_type = fields.pop('robot_type')
        robots[name] = engine.register_robot(name, robot_type, **fields).robot_id

    detection = engine.record_detection(robots['Warehouse Bot 1'], **SEED_DETECTION)
    task = engine.submit_task(**SEED_TASK)
    return {'robots': robots, 'detection': detection, 'task': task}
