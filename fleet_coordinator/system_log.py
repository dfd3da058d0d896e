"""
System log collaborator.

Append-only observability records, mirrored to the standard logging module.
Writing an entry never fails the operation that produced it.
"""

import itertools
import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from core.data_models import LogLevel, SystemLogEntry
from core.interfaces import ISystemLogSink


class InMemoryLogSink(ISystemLogSink):
    """Bounded buffer of the most recent log entries."""

    def __init__(self, max_entries: int = 10000):
        self._entries: Deque[SystemLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def write(self, entry: SystemLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> List[SystemLogEntry]:
        with self._lock:
            return list(self._entries)


class SystemLog:
    """Builds SystemLogEntry records and hands them to a sink."""

    def __init__(self, sink: Optional[ISystemLogSink] = None, max_entries: int = 10000):
        self.sink = sink or InMemoryLogSink(max_entries)
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self.logger = logging.getLogger("fleet_coordinator.system_log")

    def emit(self, level: LogLevel, source: str, message: str,
             robot_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> Optional[SystemLogEntry]:
        """
        Record an entry. Sink failures are reported through logging only.

        Returns:
            The entry written, or None if it could not be built or stored
        """
        with self._id_lock:
            log_id = next(self._ids)

        logging.getLogger(f"fleet_coordinator.{source}").log(
            logging.getLevelName(LogLevel(level).value), message
        )

        try:
            entry = SystemLogEntry(
                log_id=log_id,
                log_level=level,
                source_service=source,
                robot_id=robot_id,
                message=message,
                additional_data=data or {}
            )
            self.sink.write(entry)
            return entry
        except Exception as e:
            self.logger.warning(f"Dropped system log entry from {source}: {e}")
            return None

    def list_entries(self, robot_id: Optional[str] = None, level: Optional[LogLevel] = None,
                     limit: Optional[int] = None) -> List[SystemLogEntry]:
        """List buffered entries, newest first."""
        if not isinstance(self.sink, InMemoryLogSink):
            return []

        entries = [
            e for e in reversed(self.sink.entries())
            if (robot_id is None or e.robot_id == robot_id)
            and (level is None or e.log_level == level)
        ]
        return entries[:limit] if limit is not None else entries
