# leadscout/rotation.py
"""Category x location rotation cursor.

The cursor is an odometer: the category index is the inner wheel, the
location index the outer one. Every run advances it exactly once, whether
the run succeeded or not.
"""
from dataclasses import dataclass, asdict, replace
from typing import Sequence, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class RotationState:
    category_index: int = 0
    location_index: int = 0
    total_runs: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RotationState":
        return cls(
            category_index=int(data.get("category_index", 0)),
            location_index=int(data.get("location_index", 0)),
            total_runs=int(data.get("total_runs", 0)),
        )


def advance(state: RotationState, category_count: int, location_count: int) -> RotationState:
    """Next cursor position; out-of-range indices are folded back by modulo first."""
    if category_count < 1 or location_count < 1:
        raise ValueError("rotation lists must not be empty")

    category_index = state.category_index % category_count + 1
    location_index = state.location_index % location_count
    if category_index >= category_count:
        category_index = 0
        location_index = (location_index + 1) % location_count

    return replace(
        state,
        category_index=category_index,
        location_index=location_index,
        total_runs=state.total_runs + 1,
    )


def current(state: RotationState, categories: Sequence[T], locations: Sequence[U]) -> tuple[T, U]:
    """The (category, location) the cursor points at."""
    return (
        categories[state.category_index % len(categories)],
        locations[state.location_index % len(locations)],
    )
