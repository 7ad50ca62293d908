"""
Drag-and-drop reorder rules.

The list is mutated as remove-then-insert, so the raw target index must be
corrected when the dragged item sat before the target: removing it shifts every
later index down by one.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional, Protocol, Sequence, TypeVar

DropPosition = Literal["above", "below"]
DROP_POSITIONS = ("above", "below")

T = TypeVar("T")


def compute_insert_index(from_index: int, to_index: int, position: DropPosition) -> int:
    """Return where the dragged item lands in the list *after* its removal."""
    if position == "below":
        return to_index if from_index < to_index else to_index + 1
    if position == "above":
        return to_index - 1 if from_index < to_index else to_index
    raise ValueError("invalid_drop_position")


def move_item(items: Sequence[T], from_index: int, to_index: int, position: DropPosition) -> List[T]:
    """Return a new list with `items[from_index]` dropped above/below `items[to_index]`.

    Out-of-range indices raise IndexError; they cannot come from a rendered row.
    """
    size = len(items)
    for idx in (from_index, to_index):
        if not isinstance(idx, int) or idx < 0 or idx >= size:
            raise IndexError("reorder index out of range")
    if position not in DROP_POSITIONS:
        raise ValueError("invalid_drop_position")
    result = list(items)
    if from_index == to_index:
        return result
    moved = result.pop(from_index)
    result.insert(compute_insert_index(from_index, to_index, position), moved)
    return result


class _Movable(Protocol):
    def move(self, from_index: int, to_index: int, position: DropPosition) -> None:
        ...


@dataclass
class DragTracker:
    """Transient drag gesture state used only to draw the insertion line.

    Nothing here is persisted; `end` applies at most one move and every exit
    path clears the gesture.
    """

    dragged_index: Optional[int] = None
    drag_over_index: Optional[int] = None
    drop_position: Optional[DropPosition] = None

    def start(self, index: int) -> None:
        self.dragged_index = index
        self.drag_over_index = None
        self.drop_position = None

    def over(self, index: int, pointer_y: float, row_top: float, row_height: float) -> None:
        if self.dragged_index is None or self.dragged_index == index:
            return
        midpoint = row_top + row_height / 2
        self.drag_over_index = index
        self.drop_position = "above" if pointer_y < midpoint else "below"

    def leave(self) -> None:
        self.drag_over_index = None
        self.drop_position = None

    def cancel(self) -> None:
        self.dragged_index = None
        self.drag_over_index = None
        self.drop_position = None

    def end(self, target: _Movable) -> bool:
        """Finish the gesture; returns True when `target` was reordered."""
        dragged, over, position = self.dragged_index, self.drag_over_index, self.drop_position
        self.cancel()
        if dragged is None or over is None or position is None or dragged == over:
            return False
        target.move(dragged, over, position)
        return True

    def indicator(self, index: int) -> Optional[DropPosition]:
        """Which edge of row `index` should show the insertion line, if any."""
        if self.drag_over_index == index and self.dragged_index != index:
            return self.drop_position
        return None


__all__ = [
    "DropPosition",
    "DROP_POSITIONS",
    "compute_insert_index",
    "move_item",
    "DragTracker",
]
