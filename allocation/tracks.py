"""
tracks.py - Track registry

A track is one independently configured staking pool. Tracks are created by
the owner, get sequential ids that are never reused, and are never deleted:
they can only be disabled.

The registry owns track configuration and lifecycle flags. Checkpoint history
for a track lives in the CheckpointStore; the AllocationMaster ties the two.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional

from .core import (
    Unauthorized, TrackNotFound,
    to_decimal,
)


@dataclass(frozen=True, slots=True)
class Track:
    """
    Configuration and lifecycle of one allocation pool.

    Attributes:
        id: Sequential id assigned at creation
        name: Display name, immutable
        stake_token: Symbol of the token accepted by this track
        weight_accrual_rate: Weight per unit staked per block
        max_stakes: Ceiling on the track's total stake (None = uncapped)
        enabled: False once disabled; disabled tracks accept no new stakes
        sale_counter: Number of completed sale rounds
    """
    id: int
    name: str
    stake_token: str
    weight_accrual_rate: Decimal
    max_stakes: Optional[Decimal] = None
    enabled: bool = True
    sale_counter: int = 0

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Track name cannot be empty")
        if not self.stake_token or not self.stake_token.strip():
            raise ValueError("Track stake_token cannot be empty")
        if not isinstance(self.weight_accrual_rate, Decimal):
            object.__setattr__(self, 'weight_accrual_rate', to_decimal(self.weight_accrual_rate))
        if not self.weight_accrual_rate.is_finite() or self.weight_accrual_rate < 0:
            raise ValueError(f"weight_accrual_rate must be non-negative, got {self.weight_accrual_rate}")
        if self.max_stakes is not None:
            if not isinstance(self.max_stakes, Decimal):
                object.__setattr__(self, 'max_stakes', to_decimal(self.max_stakes))
            if self.max_stakes.is_nan() or self.max_stakes < 0:
                raise ValueError(f"max_stakes must be non-negative, got {self.max_stakes}")


class TrackRegistry:
    """
    Ordered collection of tracks guarded by a single owner.

    The owner is fixed at construction and checked on every administrative
    call; all other reads are open.
    """

    def __init__(self, owner: str):
        if not owner or not owner.strip():
            raise ValueError("Registry owner cannot be empty")
        self.owner = owner
        self._tracks: List[Track] = []

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self):
        return iter(tuple(self._tracks))

    def only_owner(self, sender: str) -> None:
        """
        Raises:
            Unauthorized: If sender is not the owner.
        """
        if sender != self.owner:
            raise Unauthorized(f"{sender} is not the owner")

    def get(self, track_id: int) -> Track:
        """
        Raises:
            TrackNotFound: If no track has this id.
        """
        if not isinstance(track_id, int) or isinstance(track_id, bool) or not 0 <= track_id < len(self._tracks):
            raise TrackNotFound(f"Track {track_id!r} not found")
        return self._tracks[track_id]

    def add(self, sender: str, name: str, stake_token: str, weight_accrual_rate, max_stakes=None) -> Track:
        """Create an enabled track with sale counter 0 and return it."""
        self.only_owner(sender)
        track = Track(
            id=len(self._tracks),
            name=name,
            stake_token=stake_token,
            weight_accrual_rate=weight_accrual_rate,
            max_stakes=max_stakes,
        )
        self._tracks.append(track)
        return track

    def disable(self, sender: str, track_id: int) -> Track:
        """Disable a track. Disabling twice is a no-op."""
        self.only_owner(sender)
        track = self.get(track_id)
        if track.enabled:
            track = replace(track, enabled=False)
            self._tracks[track_id] = track
        return track

    def preview_bump(self, sender: str, track_id: int) -> Track:
        """The track as it would be after a sale-counter bump; nothing is stored."""
        self.only_owner(sender)
        track = self.get(track_id)
        return replace(track, sale_counter=track.sale_counter + 1)

    def store(self, track: Track) -> None:
        """Replace a track with an updated copy of itself."""
        current = self.get(track.id)
        if (current.name, current.stake_token, current.weight_accrual_rate, current.max_stakes) != (
            track.name, track.stake_token, track.weight_accrual_rate, track.max_stakes
        ):
            raise ValueError(f"Track {track.id} configuration is immutable")
        if track.enabled and not current.enabled:
            raise ValueError(f"Track {track.id} cannot be re-enabled")
        if track.sale_counter < current.sale_counter:
            raise ValueError(f"Track {track.id} sale counter cannot decrease")
        self._tracks[track.id] = track
