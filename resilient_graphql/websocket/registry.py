"""
Subscription registry.

The registry holds the application's logical subscriptions. Entries outlive
the socket: their stream handles are dropped when the connection closes and
recreated on the next connection, while the entries themselves stay until
they are explicitly unsubscribed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Tuple, Union

from graphql import DocumentNode

logger = logging.getLogger(__name__)

Variables = Optional[Dict[str, Any]]
Transformer = Callable[[Any], Any]


class StreamHandle(Protocol):
    """Handle of one stream opened on the transport."""

    def unsubscribe(self) -> None:
        ...


def make_subscription_key(name: str, variables: Variables = None) -> str:
    """
    Build the identity of a logical subscription.

    Keys do not depend on the order of the variables, so structurally equal
    variables always produce the same key.
    """
    serialized = json.dumps(variables, sort_keys=True, separators=(",", ":"), default=str)
    return f"{name}:{serialized}"


@dataclass
class SubscriptionEntry:
    """A logical subscription and its current stream handle."""

    key: str
    name: str
    document: Union[str, DocumentNode]
    variables: Variables
    transformer: Transformer
    handle: Optional[StreamHandle] = field(default=None, repr=False)

    def transform(self, data: Any) -> Any:
        """Turn a stream payload into an application event, or None to drop it."""
        return self.transformer(data)


class SubscriptionRegistry:
    """
    Insertion-ordered map of logical subscriptions.

    Example:
        ```python
        registry = SubscriptionRegistry()
        entry, created = registry.add("catCreated", CAT_CREATED, {"owner": "1"}, CatCreated)

        for entry in registry.entries_without_handle():
            entry.handle = transport.subscribe(entry.document, entry.variables, sink)
        ```
    """

    def __init__(self) -> None:
        self._entries: Dict[str, SubscriptionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[SubscriptionEntry]:
        return iter(list(self._entries.values()))

    def get(self, key: str) -> Optional[SubscriptionEntry]:
        """Get an entry by key."""
        return self._entries.get(key)

    def add(
        self,
        name: str,
        document: Union[str, DocumentNode],
        variables: Variables,
        transformer: Transformer,
    ) -> Tuple[SubscriptionEntry, bool]:
        """
        Record a subscription.

        Returns:
            Tuple of the entry and whether it was created. An existing entry
            with the same key is returned unchanged.
        """
        key = make_subscription_key(name, variables)
        existing = self._entries.get(key)
        if existing is not None:
            logger.warning(f"Trying to subscribe twice to same subscription {key}, skipping")
            return existing, False

        entry = SubscriptionEntry(
            key=key,
            name=name,
            document=document,
            variables=variables,
            transformer=transformer,
        )
        self._entries[key] = entry
        return entry, True

    def remove(self, name: str, variables: Variables = None) -> Optional[SubscriptionEntry]:
        """
        Remove a subscription and stop its stream.

        Returns:
            The removed entry, or None if the key was unknown
        """
        key = make_subscription_key(name, variables)
        entry = self._entries.pop(key, None)
        if entry is None:
            logger.warning(f"Trying to unsubscribe from {key}, but subscription doesn't exist")
            return None

        if entry.handle is not None:
            handle, entry.handle = entry.handle, None
            handle.unsubscribe()
        return entry

    def list_active(self) -> List[Tuple[str, Variables]]:
        """Get ``(name, variables)`` of every subscription in registration order."""
        return [(entry.name, entry.variables) for entry in self._entries.values()]

    def entries_without_handle(self) -> List[SubscriptionEntry]:
        """Get the entries that need a stream, in registration order."""
        return [entry for entry in self._entries.values() if entry.handle is None]

    def entries_with_handle(self) -> List[SubscriptionEntry]:
        """Get the entries that currently have a stream."""
        return [entry for entry in self._entries.values() if entry.handle is not None]

    def clear_handles(self) -> None:
        """Forget every stream handle, keeping the entries."""
        for entry in self._entries.values():
            entry.handle = None
