"""
Per-key replaying value cells and the keyed map that owns them.
"""

import logging
from typing import Dict, Generic, List, Optional, TypeVar

from entitystore.cache.base import ABSENT
from entitystore.cache.streams import EntityStream, Observer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cell(Generic[T]):
    """
    Current value of one key plus its subscribers.

    Subscribing delivers the current value (which may be ABSENT)
    synchronously, then every later push.
    """

    __slots__ = ("key", "_value", "_observers", "_completed")

    def __init__(self, key: str):
        self.key = key
        self._value = ABSENT
        self._observers: List[Observer] = []
        self._completed = False

    @property
    def value(self):
        return self._value

    @property
    def present(self) -> bool:
        return self._value is not ABSENT

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    @property
    def completed(self) -> bool:
        return self._completed

    def next(self, value) -> None:
        """
        Store a value and push it to every current subscriber.

        A subscriber may write to the cell while being notified. The newer
        value is then pushed to everyone by the nested call and delivery of
        the superseded one stops.
        """
        if self._completed:
            return
        self._value = value
        for observer in list(self._observers):
            if self._value is not value:
                break
            observer.on_next(value)

    def complete(self) -> None:
        """Tear the cell down; subscribers are completed and dropped."""
        if self._completed:
            return
        self._completed = True
        self._value = ABSENT
        observers, self._observers = self._observers, []
        for observer in observers:
            observer.on_complete()

    def as_stream(self) -> EntityStream:
        """Stream of this cell's values, ABSENT included."""
        def subscribe_fn(observer: Observer):
            if self._completed:
                observer.on_complete()
                return None
            self._observers.append(observer)
            observer.on_next(self._value)

            def remove() -> None:
                if observer in self._observers:
                    self._observers.remove(observer)

            return remove

        return EntityStream(subscribe_fn)


class KeyedValueStore(Generic[T]):
    """Map from normalized key to Cell; a cell exists per recently referenced key."""

    def __init__(self) -> None:
        self._cells: Dict[str, Cell[T]] = {}

    def cell(self, key: str) -> Cell[T]:
        """Get the cell for a key, creating an absent one if needed."""
        cell = self._cells.get(key)
        if cell is None:
            cell = Cell(key)
            self._cells[key] = cell
        return cell

    def peek(self, key: str) -> Optional[Cell[T]]:
        """Get the cell for a key without creating it."""
        return self._cells.get(key)

    def write(self, key: str, value: T) -> Cell[T]:
        cell = self.cell(key)
        cell.next(value)
        return cell

    def clear_key(self, key: str) -> bool:
        """
        Mark a key absent and drop its cell.

        Subscribers captured on the old cell see the ABSENT push; a later
        write for the same key goes to a fresh cell.
        """
        cell = self._cells.pop(key, None)
        if cell is None:
            return False
        was_present = cell.present
        cell.next(ABSENT)
        return was_present

    def clear_all(self) -> int:
        """Complete every cell and empty the map. Returns the number of present keys dropped."""
        cells, self._cells = self._cells, {}
        count = 0
        for cell in cells.values():
            if cell.present:
                count += 1
            cell.complete()
        return count

    def present_keys(self) -> List[str]:
        return [key for key, cell in self._cells.items() if cell.present]

    def present_values(self) -> List[T]:
        return [cell.value for cell in self._cells.values() if cell.present]

    def __len__(self) -> int:
        return sum(1 for cell in self._cells.values() if cell.present)

    def __contains__(self, key: object) -> bool:
        cell = self._cells.get(key)  # type: ignore[arg-type]
        return cell is not None and cell.present
