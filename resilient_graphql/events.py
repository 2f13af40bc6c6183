"""
Client event management.

This module defines the events surfaced to the application by the
subscription service and the manager that dispatches them to callbacks.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ClientEvent(str, Enum):
    """Events surfaced to the application."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CREDENTIAL_EXPIRED = "credential_expired"
    SOCKET_ERROR = "socket_error"
    FATAL_ERROR = "fatal_error"
    SUBSCRIPTION_ERROR = "subscription_error"
    LATENCY_MEASURED = "latency_measured"
    DISPATCH = "dispatch"


class EventCallbackManager:
    """
    Manager for event callbacks.

    Callbacks are called synchronously in registration order. Exceptions
    raised by a callback are logged and never reach the code that emitted the
    event, so a faulty handler cannot break the connection lifecycle.

    Example:
        ```python
        events = EventCallbackManager()
        events.add_callback(ClientEvent.LATENCY_MEASURED, lambda ms: print(f"{ms:.0f} ms"))
        events.emit(ClientEvent.LATENCY_MEASURED, 42.0)
        ```
    """

    def __init__(self) -> None:
        self._callbacks: Dict[ClientEvent, List[Callable[..., Any]]] = {
            event: [] for event in ClientEvent
        }
        self._emitted: Dict[ClientEvent, int] = {event: 0 for event in ClientEvent}

    def add_callback(self, event: Union[ClientEvent, str], callback: Callable[..., Any]) -> None:
        """Add a callback for an event."""
        self._callbacks[ClientEvent(event)].append(callback)

    def remove_callback(self, event: Union[ClientEvent, str], callback: Callable[..., Any]) -> None:
        """Remove a specific callback."""
        callbacks = self._callbacks[ClientEvent(event)]
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: ClientEvent, *args: Any) -> None:
        """Call all callbacks for an event."""
        self._emitted[event] += 1
        for callback in list(self._callbacks[event]):
            try:
                callback(*args)
            except Exception as e:
                logger.warning(f"Error in {event.value} callback: {e}")

    def clear_callbacks(self, event: Optional[Union[ClientEvent, str]] = None) -> None:
        """Clear callbacks for a specific event or all events."""
        if event:
            self._callbacks[ClientEvent(event)].clear()
        else:
            for callbacks in self._callbacks.values():
                callbacks.clear()

    @property
    def statistics(self) -> Dict[str, Any]:
        """Get callback statistics."""
        return {
            event.value: {
                "callbacks": len(self._callbacks[event]),
                "emitted": self._emitted[event],
            }
            for event in ClientEvent
        }
