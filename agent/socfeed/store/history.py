from collections import deque
from typing import Callable, Deque, Generic, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class BoundedHistory(Generic[T]):
    """
    Fixed-capacity, newest-first history of entities keyed by their ``id``.

    Pushing past capacity drops the oldest entry from the tail. Ids are
    unique: pushing an entity whose id is already held replaces the old
    entry and moves it to the front.
    """

    def __init__(self, name: str, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity for {name} must be positive, got {capacity}")
        self.name = name
        self.capacity = capacity
        self._items: Deque[T] = deque(maxlen=capacity)

    def push(self, item: T) -> Optional[T]:
        """Prepend item; returns the entry evicted from the tail, if any."""
        self._discard(item.id)
        evicted = self._items[-1] if len(self._items) == self.capacity else None
        self._items.appendleft(item)
        return evicted

    def update_by_id(self, item_id: str, mutator: Callable[[T], None]) -> bool:
        for item in self._items:
            if item.id == item_id:
                mutator(item)
                return True
        return False

    def replace_all(self, items: Iterable[T]):
        """Swap contents for items (already newest-first); keeps the first of any repeated id."""
        seen = set()
        fresh: Deque[T] = deque(maxlen=self.capacity)
        for item in items:
            if item.id in seen:
                continue
            seen.add(item.id)
            fresh.append(item)
            if len(fresh) == self.capacity:
                break
        self._items = fresh

    def get(self, item_id: str) -> Optional[T]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def snapshot(self) -> List[T]:
        return list(self._items)

    def clear(self):
        self._items.clear()

    def _discard(self, item_id: str):
        for existing in self._items:
            if existing.id == item_id:
                self._items.remove(existing)
                return

    def __contains__(self, item_id: object) -> bool:
        return any(item.id == item_id for item in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))
