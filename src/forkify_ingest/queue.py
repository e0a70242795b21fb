from __future__ import annotations
import logging
from typing import Any, Callable, Literal, Optional, Union
from forkify_ingest.models import ItemStatus, PersistedRecipe, QueueItem

logger = logging.getLogger(__name__)

QueueEvent = Literal["added", "updated", "removed"]
Listener = Callable[[QueueEvent, QueueItem], None]

_ALLOWED_TRANSITIONS: dict[ItemStatus, set[ItemStatus]] = {
    "processing": {"done", "error"},
    "done": set(),
    "error": set(),
}


class InvalidTransitionError(Exception):
    pass


class QueueStore:
    """Holds every QueueItem of the session, keyed by local id, in submission order.

    Items are immutable snapshots; each update replaces the stored snapshot and
    notifies listeners. Status may only move from processing to done or error.
    """

    def __init__(self) -> None:
        self._items: dict[str, QueueItem] = {}
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: QueueEvent, item: QueueItem) -> None:
        for listener in list(self._listeners):
            listener(event, item)

    def add(self, item: QueueItem) -> QueueItem:
        if item.id in self._items:
            raise ValueError(f"Queue item {item.id} is already registered")
        self._items[item.id] = item
        self._notify("added", item)
        return item

    def update(self, item_id: str, **changes: Any) -> Optional[QueueItem]:
        current = self._items.get(item_id)
        if current is None:
            logger.debug("Dropping update for removed queue item %s", item_id)
            return None

        new_status = changes.get("status", current.status)
        if new_status != current.status and new_status not in _ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Queue item {item_id} cannot move from {current.status} to {new_status}"
            )
        if new_status != "error":
            changes["error_message"] = None

        updated = QueueItem.model_validate({**current.model_dump(), **changes})
        self._items[item_id] = updated
        self._notify("updated", updated)
        return updated

    def complete(self, item_id: str, **changes: Any) -> Optional[QueueItem]:
        return self.update(item_id, status="done", **changes)

    def fail(self, item_id: str, message: str) -> Optional[QueueItem]:
        return self.update(item_id, status="error", error_message=message)

    def remove(self, item_id: str) -> Optional[QueueItem]:
        item = self._items.pop(item_id, None)
        if item is not None:
            self._notify("removed", item)
        return item

    def get(self, item_id: str) -> Optional[QueueItem]:
        return self._items.get(item_id)

    def all(self, status: ItemStatus | None = None) -> list[QueueItem]:
        items = list(self._items.values())
        if status is not None:
            items = [i for i in items if i.status == status]
        return items

    def merged_with(self, records: list[PersistedRecipe]) -> list[Union[QueueItem, PersistedRecipe]]:
        """Queue items first, then persisted records not already represented by a queue item."""
        items = self.all()
        tracked = {i.record_id for i in items if i.record_id}
        return [*items, *(r for r in records if r.id not in tracked)]

    def __len__(self) -> int:
        return len(self._items)
