"""
Core interfaces for the fleet coordination system.

Defines the contracts for the collaborators the coordinator writes to but
does not own: durable storage and the system log sink.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from .data_models import Robot, Task, NavigationPath, Detection, SystemLogEntry


@dataclass
class ChangeSet:
    """Records written together as one atomic unit."""
    robots: List[Robot] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    paths: List[NavigationPath] = field(default_factory=list)
    detections: List[Detection] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.robots or self.tasks or self.paths or self.detections)


class IStateStore(ABC):
    """Records storage must durably hold and the queries it must support."""

    @abstractmethod
    def apply(self, changes: ChangeSet) -> None:
        """Persist every record in the change set, or none of them."""
        pass

    @abstractmethod
    def get_robot(self, robot_id: str) -> Optional[Robot]:
        pass

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]:
        pass

    @abstractmethod
    def list_pending_tasks(self) -> List[Task]:
        """PENDING tasks ordered by priority descending, then creation time ascending."""
        pass

    @abstractmethod
    def list_paths_by_robot(self, robot_id: str) -> List[NavigationPath]:
        pass

    @abstractmethod
    def list_detections_by_robot(self, robot_id: str) -> List[Detection]:
        pass


class ISystemLogSink(ABC):
    """Destination for append-only system log entries."""

    @abstractmethod
    def write(self, entry: SystemLogEntry) -> None:
        pass
