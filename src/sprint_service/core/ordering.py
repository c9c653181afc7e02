"""Drag-and-drop reordering of a sequence."""

from typing import Sequence, TypeVar

T = TypeVar("T")


def move_index(sequence: Sequence[T], old_index: int, new_index: int) -> list[T]:
    """Move the element at ``old_index`` so that it ends up at ``new_index``.

    Elements between the two positions shift by one. Out-of-range or equal
    indexes return an unchanged copy.
    """
    items = list(sequence)
    size = len(items)
    if old_index == new_index or not (0 <= old_index < size) or not (0 <= new_index < size):
        return items
    moved = items.pop(old_index)
    items.insert(new_index, moved)
    return items


def reorder(sequence: Sequence[T], source_id: T, target_id: T) -> list[T]:
    """Move ``source_id`` into the position currently held by ``target_id``.

    Returns a new list; the input is not modified. If either id is missing
    or the ids are equal the sequence comes back unchanged.

    Example:
        >>> reorder(["a", "b", "c", "d"], "a", "c")
        ['b', 'c', 'a', 'd']
    """
    items = list(sequence)
    if source_id == target_id or source_id not in items or target_id not in items:
        return items
    return move_index(items, items.index(source_id), items.index(target_id))
