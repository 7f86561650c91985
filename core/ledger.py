"""
ClipCraft — Edit History Ledger
Append-only action log plus an undo/redo cursor.

    ledger = EditLedger()
    ledger.append(Trim(start=1, end=9))
    ledger.append(SetFilters(filters=resolve_preset("vintage"), preset="vintage"))
    ledger.undo()
    state = ledger.materialize()   # trim only

Appending after an undo discards the redo tail (linear history).
Mutations and materialize() hold the same lock, so a reader never sees a
half-applied action.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.bundle import FilterBundle
from core.edits import (
    AddOverlay,
    AddTransition,
    Crop,
    RemoveOverlay,
    RemoveTransition,
    SetFilters,
    SetSpeed,
    SetVolume,
    Split,
    TextOverlay,
    Transition,
    Trim,
)
from core.errors import InvalidInputError

logger = logging.getLogger(__name__)


class MaterializedState(BaseModel):
    """Effective edit state after folding the active actions.

    Defaults describe an untouched clip: whole duration, no crop, identity
    filters, no overlays or transitions, 1x speed, full volume.
    """

    model_config = ConfigDict(frozen=True)

    trim: Optional[Trim] = None
    crop: Optional[Crop] = None
    split_points: tuple[float, ...] = ()
    filters: FilterBundle = Field(default_factory=FilterBundle)
    overlays: tuple[TextOverlay, ...] = ()
    transitions: tuple[Transition, ...] = ()
    speed: float = 1.0
    volume: float = 1.0

    @property
    def trim_range(self) -> Optional[tuple[float, float]]:
        if self.trim is None:
            return None
        return (self.trim.start, self.trim.end)

    def is_default(self) -> bool:
        return self == MaterializedState()


class EditLedger:
    """Ordered EditActions plus a cursor (-1 = nothing applied).

    Actions at indices <= cursor are active; anything after is redoable.
    """

    def __init__(self, actions=None):
        self._lock = threading.RLock()
        self._actions: list = list(actions or [])
        self._cursor = len(self._actions) - 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> int:
        with self._lock:
            return self._cursor

    @property
    def actions(self) -> tuple:
        with self._lock:
            return tuple(self._actions)

    @property
    def active_actions(self) -> tuple:
        with self._lock:
            return tuple(self._actions[: self._cursor + 1])

    @property
    def can_undo(self) -> bool:
        with self._lock:
            return self._cursor >= 0

    @property
    def can_redo(self) -> bool:
        with self._lock:
            return self._cursor < len(self._actions) - 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def history(self) -> list[dict]:
        """Descriptions for a history panel, oldest first."""
        with self._lock:
            return [
                {
                    "index": i,
                    "kind": action.kind,
                    "description": action.description,
                    "timestamp": action.timestamp,
                    "active": i <= self._cursor,
                }
                for i, action in enumerate(self._actions)
            ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, action) -> int:
        """Record `action`, dropping any redo tail. Returns the new cursor."""
        with self._lock:
            dropped = len(self._actions) - (self._cursor + 1)
            del self._actions[self._cursor + 1:]
            self._actions.append(action)
            self._cursor = len(self._actions) - 1
            if dropped:
                logger.debug("Discarded %d redoable action(s)", dropped)
            return self._cursor

    def undo(self) -> bool:
        """Step the cursor back. Returns False when there is nothing to undo."""
        with self._lock:
            if self._cursor == -1:
                return False
            self._cursor -= 1
            return True

    def redo(self) -> bool:
        """Step the cursor forward. Returns False when there is nothing to redo."""
        with self._lock:
            if self._cursor == len(self._actions) - 1:
                return False
            self._cursor += 1
            return True

    def clear(self) -> None:
        with self._lock:
            self._actions.clear()
            self._cursor = -1

    # ------------------------------------------------------------------
    # Materialize
    # ------------------------------------------------------------------

    def materialize(self) -> MaterializedState:
        """Fold every active action into a single MaterializedState."""
        with self._lock:
            active = list(self._actions[: self._cursor + 1])
        return fold_actions(active)


def fold_actions(actions) -> MaterializedState:
    """Replay `actions` in order.

    Scalar edits (trim, crop, split, filters, speed, volume): last one wins.
    Overlays and transitions accumulate by id, last write wins per id, in
    first-insertion order.
    """
    trim = None
    crop = None
    split_points: tuple[float, ...] = ()
    filters = FilterBundle()
    overlays: dict[str, TextOverlay] = {}
    transitions: dict[str, Transition] = {}
    speed = 1.0
    volume = 1.0

    for action in actions:
        if isinstance(action, Trim):
            trim = action
        elif isinstance(action, Crop):
            crop = action
        elif isinstance(action, Split):
            split_points = action.points
        elif isinstance(action, SetFilters):
            filters = action.filters
        elif isinstance(action, AddOverlay):
            overlays[action.overlay.id] = action.overlay
        elif isinstance(action, RemoveOverlay):
            overlays.pop(action.overlay_id, None)
        elif isinstance(action, AddTransition):
            transitions[action.transition.id] = action.transition
        elif isinstance(action, RemoveTransition):
            transitions.pop(action.transition_id, None)
        elif isinstance(action, SetSpeed):
            speed = action.factor
        elif isinstance(action, SetVolume):
            volume = action.factor
        else:
            raise TypeError(f"Unknown edit action: {action!r}")

    return MaterializedState(
        trim=trim,
        crop=crop,
        split_points=split_points,
        filters=filters,
        overlays=tuple(overlays.values()),
        transitions=tuple(transitions.values()),
        speed=speed,
        volume=volume,
    )


def split_segments(points, duration: float) -> list[tuple[float, float]]:
    """Cut [0, duration] at `points`.

    Points are sorted and de-duplicated; points at or outside the clip
    bounds are ignored.

    Returns:
        (start, end) pairs covering the whole clip.

    Raises:
        InvalidInputError: No points, or a non-positive duration.
    """
    if duration <= 0:
        raise InvalidInputError(f"Cannot split a clip of duration {duration}")
    if not points:
        raise InvalidInputError("Split needs at least one point")
    cuts = sorted(p for p in set(points) if 0 < p < duration)
    bounds = [0.0] + cuts + [float(duration)]
    return [(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1)]
