"""
Lifecycle base for coordinator components.

Each component logs under ``fleet_coordinator.<name>`` and moves through
CREATED -> INITIALIZED -> RUNNING -> STOPPED. Synchronous operations work in
any state; the lifecycle only gates background work such as the scheduling
loop.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ComponentState(str, Enum):
    """Lifecycle state of a component."""
    CREATED = "created"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class BaseComponent(ABC):
    """Common lifecycle and logging for registry, scheduler, tracker and engine."""

    def __init__(self, component_name: str, config: Optional[Dict[str, Any]] = None):
        self.component_name = component_name
        self.config = dict(config or {})
        self.logger = logging.getLogger(f"fleet_coordinator.{component_name}")
        self.state = ComponentState.CREATED
        self.start_time: Optional[datetime] = None

    @property
    def is_initialized(self) -> bool:
        return self.state not in (ComponentState.CREATED, ComponentState.FAILED)

    @property
    def is_running(self) -> bool:
        return self.state == ComponentState.RUNNING

    async def initialize(self) -> bool:
        """Hook run once before the first start; False aborts startup."""
        self.logger.debug(f"{self.component_name} ready")
        return True

    async def start(self) -> bool:
        """Hook for starting background work."""
        return True

    async def stop(self) -> bool:
        """Hook for stopping background work."""
        return True

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return at least ``component`` and ``status`` keys."""

    def get_uptime(self) -> float:
        if self.start_time is None or not self.is_running:
            return 0.0
        return (datetime.now() - self.start_time).total_seconds()

    def get_status(self) -> Dict[str, Any]:
        return {
            'component_name': self.component_name,
            'state': self.state.value,
            'uptime_seconds': self.get_uptime(),
            'start_time': self.start_time.isoformat() if self.start_time else None
        }

    async def safe_start(self) -> bool:
        """Run initialize (first time only) and start, logging instead of raising.

        Returns:
            True when the component ends up RUNNING
        """
        if self.is_running:
            return True
        try:
            if not self.is_initialized:
                if not await self.initialize():
                    self.state = ComponentState.FAILED
                    self.logger.error(f"{self.component_name} failed to initialize")
                    return False
                self.state = ComponentState.INITIALIZED

            if not await self.start():
                self.logger.error(f"{self.component_name} refused to start")
                return False
        except Exception as e:
            self.state = ComponentState.FAILED
            self.logger.exception(f"{self.component_name} crashed while starting: {e}")
            return False

        self.state = ComponentState.RUNNING
        self.start_time = datetime.now()
        self.logger.info(f"{self.component_name} running")
        return True

    async def safe_stop(self) -> bool:
        """Stop the component, logging instead of raising."""
        if not self.is_running:
            return True
        try:
            stopped = await self.stop()
        except Exception as e:
            self.state = ComponentState.FAILED
            self.logger.exception(f"{self.component_name} crashed while stopping: {e}")
            return False

        if stopped:
            self.state = ComponentState.STOPPED
            self.logger.info(f"{self.component_name} stopped")
        else:
            self.logger.error(f"{self.component_name} refused to stop")
        return stopped
