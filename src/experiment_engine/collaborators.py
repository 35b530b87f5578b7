"""
Feature-flag and notification collaborators.

The engine only calls these through the small interfaces below. The bundled
implementations log or record calls; production deployments plug in clients
for their own flag service and event bus.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


class FeatureFlagClient(ABC):
    @abstractmethod
    def set_value(self, flag_id: str, value: str, rollout_percent: float) -> None:
        """Serve ``value`` for ``flag_id`` to ``rollout_percent`` of traffic."""


class Notifier(ABC):
    @abstractmethod
    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Fire-and-forget event emission."""


class InMemoryFeatureFlags(FeatureFlagClient):
    def __init__(self):
        self._lock = threading.Lock()
        self.flags: Dict[str, Tuple[str, float]] = {}
        self.calls: List[Tuple[str, str, float]] = []

    def set_value(self, flag_id: str, value: str, rollout_percent: float) -> None:
        with self._lock:
            self.flags[flag_id] = (value, rollout_percent)
            self.calls.append((flag_id, value, rollout_percent))
        logger.info(f"Feature flag {flag_id} -> {value!r} at {rollout_percent}%")


class LoggingNotifier(Notifier):
    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Event {event_type}: {payload}")


class InMemoryNotifier(Notifier):
    """Records emitted events; used by tests and local runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event_type, payload))

    def names(self) -> List[str]:
        with self._lock:
            return [name for name, _ in self.events]
