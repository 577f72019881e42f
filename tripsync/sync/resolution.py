from __future__ import annotations

from tripsync.domain.models import ConflictItem, Resolution, ResolutionMap
from tripsync.sync.differ import conflicting_trip_ids


class ResolutionCollector:
    """Holds the user's keep-local / use-remote choice per conflicting trip.

    Conflicts are shown per field but the choice applies to the whole trip.
    Every conflicting trip starts as `local`.
    """

    def __init__(self, conflicts: list[ConflictItem]):
        self.conflicts = list(conflicts)
        self._choices: dict[str, Resolution] = {
            trip_id: Resolution.LOCAL for trip_id in conflicting_trip_ids(self.conflicts)
        }

    def trip_ids(self) -> list[str]:
        return list(self._choices)

    def choice(self, trip_id: str) -> Resolution:
        return self._choices.get(trip_id, Resolution.LOCAL)

    def choose(self, trip_id: str, side: Resolution | str) -> None:
        if trip_id not in self._choices:
            raise ValueError(f"unknown_conflict_trip: {trip_id}")
        self._choices[trip_id] = Resolution(side)

    def choose_all(self, side: Resolution | str) -> None:
        value = Resolution(side)
        for trip_id in self._choices:
            self._choices[trip_id] = value

    def apply(self, resolution_map: dict[str, Resolution | str]) -> list[str]:
        """Apply a caller-supplied map; return the trip ids that were not conflicts."""
        ignored = []
        for trip_id, side in resolution_map.items():
            if trip_id in self._choices:
                self._choices[trip_id] = Resolution(side)
            else:
                ignored.append(trip_id)
        return ignored

    def resolution_map(self) -> ResolutionMap:
        return dict(self._choices)

    def grouped(self) -> list[dict]:
        groups: dict[str, dict] = {}
        for c in self.conflicts:
            group = groups.setdefault(
                c.trip_id,
                {"trip_id": c.trip_id, "trip_title": c.trip_title, "choice": self.choice(c.trip_id).value, "conflicts": []},
            )
            group["conflicts"].append(c)
        return list(groups.values())
