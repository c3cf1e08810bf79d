"""Utility functions for the recommendation system.

This module provides numeric helpers shared by the profile, learner and
strategies, the injectable clock, a bounded per-user mapping, and snapshot
persistence for the in-memory affinity store.
"""

import logging
import math
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import joblib

# Configure module logger
logger = logging.getLogger(__name__)

# Snapshot artifact filename
SNAPSHOT_FILENAME = "affinity_snapshot.joblib"


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp ``value`` into the closed range [lower, upper]."""
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with halves rounded up.

    The value is first rounded to 9 decimals so that products such as
    ``0.1 * 0.5 * 1.5 * 100`` land on 7.5 rather than 7.4999999.

    Example:
        >>> round_half_up(7.5)
        8
        >>> round_half_up(0.1 * 0.5 * 1.5 * 100)
        8
    """
    return int(math.floor(round(value, 9) + 0.5))


class Clock(ABC):
    """Source of the current time, injected into scorers and the learner."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware datetime."""

    def current_hour(self) -> int:
        return self.now().hour


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a given instant. Used by tests and the CLI."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs: float) -> None:
        """Move the clock forward by a ``timedelta(**kwargs)``."""
        self.instant = self.instant + timedelta(**kwargs)


class BoundedUserDict(OrderedDict):
    """Per-user mapping that evicts least-recently-used entries past a cap.

    Reads through :meth:`get` and writes both refresh an entry. Entries for
    which ``can_evict(value)`` is False are skipped during eviction, so the
    mapping may briefly exceed ``maxlen`` while they are in use.

    Example:
        >>> cache = BoundedUserDict(maxlen=2)
        >>> cache["u1"], cache["u2"], cache["u3"] = 1, 2, 3
        >>> list(cache)
        ['u2', 'u3']
    """

    def __init__(
        self,
        maxlen: int = 10000,
        can_evict: Optional[Callable[[Any], bool]] = None,
    ):
        super().__init__()
        self.maxlen = max(1, maxlen)
        self.can_evict = can_evict

    def __setitem__(self, key, value) -> None:
        super().__setitem__(key, value)
        self.move_to_end(key)
        self._evict()

    def get(self, key, default=None):
        if key not in self:
            return default
        self.move_to_end(key)
        return super().__getitem__(key)

    def setdefault(self, key, default=None):
        if key in self:
            return self.get(key)
        self[key] = default
        return default

    def _evict(self) -> None:
        excess = len(self) - self.maxlen
        if excess <= 0:
            return
        # The newest entry is never evicted
        for key in list(self.keys())[:-1]:
            if excess <= 0:
                break
            if self.can_evict is not None and not self.can_evict(super().__getitem__(key)):
                continue
            super().__delitem__(key)
            excess -= 1
            logger.debug(
                "Evicted least recently used entry",
                extra={"user_id": key, "maxlen": self.maxlen},
            )


def save_snapshot(state: Dict[str, Any], output_dir: str) -> Path:
    """Save an affinity store snapshot to disk.

    Creates the directory if it doesn't exist.

    Args:
        state: Plain-data dictionary produced by the store.
        output_dir: Directory path where the snapshot will be saved.

    Returns:
        Path of the written snapshot file.

    Raises:
        OSError: If unable to create the directory or write the file.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    snapshot_path = output_path / SNAPSHOT_FILENAME
    joblib.dump(state, snapshot_path)
    logger.info(f"Saved affinity snapshot to {snapshot_path}")
    return snapshot_path


def load_snapshot(snapshot_dir: str) -> Dict[str, Any]:
    """Load an affinity store snapshot from disk.

    Args:
        snapshot_dir: Directory path where the snapshot is stored.

    Returns:
        The plain-data dictionary previously passed to :func:`save_snapshot`.

    Raises:
        FileNotFoundError: If the snapshot file is missing.
    """
    snapshot_path = Path(snapshot_dir) / SNAPSHOT_FILENAME
    if not snapshot_path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {snapshot_path}")

    state = joblib.load(snapshot_path)
    logger.info(
        f"Loaded affinity snapshot from {snapshot_path}",
        extra={"num_users": len(state.get("profiles", {}))},
    )
    return state


def check_snapshot_exists(snapshot_dir: str) -> bool:
    """Check if a snapshot file exists in ``snapshot_dir``."""
    return (Path(snapshot_dir) / SNAPSHOT_FILENAME).exists()
