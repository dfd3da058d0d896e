"""
Detection Ingest.

Append-only store of perception events produced by robots.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from core.base_component import BaseComponent
from core.data_models import Detection, DetectedObject, LogLevel
from core.errors import NotFoundError, FleetValidationError
from core.interfaces import ChangeSet
from .robot_registry import RobotRegistry
from .state_store import StateCommitter
from .system_log import SystemLog


ObjectLike = Union[DetectedObject, Dict[str, Any]]


class DetectionIngest(BaseComponent):
    """Records detection events against registered robots."""

    def __init__(self, committer: StateCommitter, registry: RobotRegistry,
                 system_log: Optional[SystemLog] = None, config: Optional[Dict[str, Any]] = None):
        super().__init__("detection_ingest", config or {})
        self._committer = committer
        self._lock = committer.lock
        self._registry = registry
        self._system_log = system_log or SystemLog()
        self._detections: Dict[str, Detection] = {}
        committer.register_installer('detection', self._install)

    async def health_check(self) -> Dict[str, Any]:
        return {
            'component': 'detection_ingest',
            'status': 'healthy',
            'total_detections': self.count(),
            'timestamp': datetime.now()
        }

    def record(self, robot_id: str, image_path: str, detected_objects: Iterable[ObjectLike],
               confidence_threshold: float = 0.5, model_version: str = "unknown",
               processing_time_ms: Optional[int] = None) -> Detection:
        """
        Record a detection event.

        Args:
            robot_id: Robot that captured the frame
            image_path: Reference to the source image
            detected_objects: Objects as DetectedObject or dicts with class/confidence/bbox
            confidence_threshold: Threshold the detector ran with
            model_version: Detector model version
            processing_time_ms: Inference time

        Raises:
            NotFoundError: if the robot is not registered
            FleetValidationError: if the objects or fields are malformed
        """
        try:
            detection = Detection(
                robot_id=robot_id,
                image_path=image_path,
                detected_objects=[
                    obj if isinstance(obj, DetectedObject) else DetectedObject.model_validate(obj)
                    for obj in detected_objects
                ],
                confidence_threshold=confidence_threshold,
                model_version=model_version,
                processing_time_ms=processing_time_ms
            )
        except (ValidationError, TypeError) as e:
            raise FleetValidationError(f"Invalid detection from robot {robot_id}: {e}") from e

        with self._lock:
            if not self._registry.has_robot(robot_id):
                raise NotFoundError("Robot", robot_id)
            self._committer.commit(ChangeSet(detections=[detection]))

        labels = [obj.label for obj in detection.detected_objects]
        self._system_log.emit(LogLevel.DEBUG, self.component_name,
                              f"Detection {detection.detection_id} recorded: {len(labels)} objects",
                              robot_id=robot_id,
                              data={'detection_id': detection.detection_id, 'labels': labels,
                                    'model_version': detection.model_version})
        return detection

    def get_detection(self, detection_id: str) -> Detection:
        """
        Get a detection by id.

        Raises:
            NotFoundError: if the detection does not exist
        """
        with self._lock:
            detection = self._detections.get(detection_id)
        if detection is None:
            raise NotFoundError("Detection", detection_id)
        return detection

    def list_by_robot(self, robot_id: Optional[str] = None, limit: Optional[int] = None) -> List[Detection]:
        """List detections newest first, optionally for one robot."""
        with self._lock:
            detections = [d for d in self._detections.values()
                          if robot_id is None or d.robot_id == robot_id]
        detections.reverse()
        detections.sort(key=lambda d: d.detection_timestamp, reverse=True)
        return detections[:limit] if limit is not None else detections

    def count(self) -> int:
        with self._lock:
            return len(self._detections)

    def _install(self, detection: Detection) -> Optional[Detection]:
        previous = self._detections.get(detection.detection_id)
        self._detections[detection.detection_id] = detection
        return previous
