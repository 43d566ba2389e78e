"""
Selection Store.

Holds one onboarding category's selected IDs and enforces the category's
cardinality bounds at the point of mutation.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from .errors import SelectionLockedError
from .notifications import Notifier, NullNotifier

logger = logging.getLogger(__name__)


class Category(Enum):
    """Onboarding selection categories."""
    INTERESTS = "interests"
    SUBCATEGORIES = "subcategories"
    DEALBREAKERS = "dealbreakers"

    @property
    def api_path(self) -> str:
        """Path of the user's selection endpoint for this category."""
        return {
            Category.INTERESTS: "/api/user/interests",
            Category.SUBCATEGORIES: "/api/user/subcategories",
            Category.DEALBREAKERS: "/api/user/deal-breakers",
        }[self]

    @property
    def response_key(self) -> str:
        """Key holding the ID list in GET responses."""
        return {
            Category.INTERESTS: "interests",
            Category.SUBCATEGORIES: "subcategories",
            Category.DEALBREAKERS: "dealBreakers",
        }[self]

    @property
    def label(self) -> str:
        return {
            Category.INTERESTS: "interests",
            Category.SUBCATEGORIES: "subcategories",
            Category.DEALBREAKERS: "deal-breakers",
        }[self]


@dataclass(frozen=True)
class SelectionBounds:
    """Valid cardinality range for a category."""
    min: int
    max: int

    def contains(self, size: int) -> bool:
        return self.min <= size <= self.max


SELECTION_BOUNDS: dict[Category, SelectionBounds] = {
    Category.INTERESTS: SelectionBounds(min=3, max=6),
    Category.SUBCATEGORIES: SelectionBounds(min=3, max=12),
    Category.DEALBREAKERS: SelectionBounds(min=2, max=3),
}


class ToggleResult(Enum):
    """Outcome of a toggle call."""
    ADDED = "added"
    REMOVED = "removed"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    IGNORED = "ignored"  # blank ID


def clean_ids(ids: Iterable[str]) -> list[str]:
    """
    Trim, drop blanks and dedupe, keeping first-seen order.

    Applied at every boundary where IDs enter the store or leave for the API.
    """
    seen: set[str] = set()
    cleaned = []
    for raw in ids:
        if not isinstance(raw, str):
            continue
        item_id = raw.strip()
        if item_id and item_id not in seen:
            seen.add(item_id)
            cleaned.append(item_id)
    return cleaned


ChangeListener = Callable[[frozenset[str]], None]


class SelectionStore:
    """
    In-memory selection set for one category.

    Mutations are optimistic: they apply immediately and listeners are told
    about the new set. Persisting it is the sync engine's job.
    """

    def __init__(
        self,
        category: Category,
        bounds: SelectionBounds | None = None,
        notifier: Notifier | None = None,
    ):
        self.category = category
        self.bounds = bounds or SELECTION_BOUNDS[category]
        self._notifier = notifier or NullNotifier()
        self._selected: set[str] = set()
        self._edited = False
        self._listeners: list[ChangeListener] = []

    @property
    def selected(self) -> frozenset[str]:
        return frozenset(self._selected)

    def __len__(self) -> int:
        return len(self._selected)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._selected

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callback invoked with the new set after each mutation."""
        self._listeners.append(listener)

    def toggle(self, item_id: str) -> ToggleResult:
        """
        Remove `item_id` if selected, otherwise add it.

        Removal is always allowed, even below the minimum. Adding at capacity
        changes nothing and warns through the notifier.
        """
        cleaned = clean_ids([item_id])
        if not cleaned:
            return ToggleResult.IGNORED
        item_id = cleaned[0]

        if item_id in self._selected:
            self._selected.discard(item_id)
            result = ToggleResult.REMOVED
        elif len(self._selected) >= self.bounds.max:
            logger.debug(f"{self.category.value}: capacity {self.bounds.max} reached, rejected {item_id}")
            self._notifier.warn(
                f"You can pick up to {self.bounds.max} {self.category.label}."
            )
            return ToggleResult.CAPACITY_EXCEEDED
        else:
            self._selected.add(item_id)
            result = ToggleResult.ADDED

        self._edited = True
        self._emit()
        return result

    def is_complete(self) -> bool:
        """True once the minimum number of selections is reached."""
        return len(self._selected) >= self.bounds.min

    def can_advance(self) -> bool:
        """True when the selection size is inside [min, max]."""
        return self.bounds.contains(len(self._selected))

    def replace(self, ids: Iterable[str]) -> None:
        """
        Overwrite the set with server state.

        Only valid at load time; once the user has edited the set, hydrating
        it would silently discard their work.
        """
        if self._edited:
            raise SelectionLockedError(
                f"{self.category.value} selection already edited; refusing to hydrate"
            )
        self._selected = set(clean_ids(ids))

    def _emit(self) -> None:
        snapshot = self.selected
        for listener in self._listeners:
            listener(snapshot)
