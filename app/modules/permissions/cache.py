import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional

from app.core.exceptions import PermissionReadError
from app.modules.permissions.resolver import EMPTY, ResolutionResult
from app.modules.permissions.schemas import UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheSnapshot:
    """One complete resolution; the cache swaps whole snapshots, never fields."""
    keys: FrozenSet[str] = EMPTY
    profile: Optional[UserProfile] = None
    sequence: int = 0
    error: Optional[PermissionReadError] = None


class SessionPermissionCache:
    """
    Holds the resolved permission set for one session.

    Each resolution request takes a number from next_sequence(); apply()
    installs its result only if that number is higher than every number
    applied so far, so a slow stale response cannot overwrite a fresher one.
    """

    def __init__(self):
        self._snapshot = CacheSnapshot()
        self._issued = 0

    @property
    def snapshot(self) -> CacheSnapshot:
        return self._snapshot

    @property
    def keys(self) -> FrozenSet[str]:
        return self._snapshot.keys

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._snapshot.profile

    @property
    def last_error(self) -> Optional[PermissionReadError]:
        return self._snapshot.error

    def __contains__(self, key) -> bool:
        return key in self._snapshot.keys

    def next_sequence(self) -> int:
        self._issued += 1
        return self._issued

    def is_superseded(self, sequence: int) -> bool:
        return sequence <= self._snapshot.sequence

    def apply(self, sequence: int, result: ResolutionResult) -> bool:
        """Install result if sequence is the newest seen; returns whether it was applied."""
        if self.is_superseded(sequence):
            logger.debug(f"Discarding stale resolution #{sequence} (current #{self._snapshot.sequence})")
            return False
        self._snapshot = CacheSnapshot(
            keys=result.keys,
            profile=result.profile,
            sequence=sequence,
            error=result.error,
        )
        return True

    def clear(self) -> None:
        """Drop the resolved set and invalidate every outstanding request."""
        self._snapshot = CacheSnapshot(sequence=self._issued)
