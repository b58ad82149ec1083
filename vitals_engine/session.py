"""Capture session: a bounded window that reduces per-channel samples by median.

The window itself is enforced by the caller polling poll(); the session keeps
no timer of its own.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence

from vitals_engine import protocol
from vitals_engine.errors import UnknownChannel
from vitals_engine.models import Channel, Reading, VitalState, VitalStatus

logger = logging.getLogger(__name__)


def upper_median(samples: Sequence[float]) -> float:
    """Median as the element at index n // 2 of the sorted samples.

    For an even count this is the upper of the two middle values, not their
    average. Captured values depend on this exact choice.

    Raises:
        ValueError: If samples is empty
    """
    if not samples:
        raise ValueError("median of empty sample set")
    ordered = sorted(samples)
    return ordered[len(ordered) // 2]


class CaptureSession:
    """Per-channel capture state for one acquisition window (thread-safe)."""

    def __init__(
        self,
        window_s: float = protocol.CAPTURE_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize with every channel WAITING.

        Args:
            window_s: Window length in seconds
            clock: Monotonic time source (injectable for tests)
        """
        if window_s <= 0:
            raise ValueError(f"window_s must be positive, got {window_s}")

        self._window_s = window_s
        self._clock = clock
        self._lock = threading.RLock()

        self._active = False
        self._started_at: Optional[float] = None
        self._vitals: Dict[Channel, VitalState] = {c: VitalState() for c in Channel}

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self, now: Optional[float] = None) -> None:
        """Open the window: every channel CAPTURING with no samples or commit."""
        with self._lock:
            self._active = True
            self._started_at = self._now(now)
            for state in self._vitals.values():
                state.status = VitalStatus.CAPTURING
                state.samples = []
                state.current_value = None
                state.committed_value = None
            logger.info(f"Capture session started ({self._window_s:.0f}s window)")

    def stop(self) -> None:
        """Deactivate ingestion. Does not commit anything."""
        with self._lock:
            if self._active:
                logger.info("Capture session stopped")
            self._active = False

    def finish(self) -> Dict[str, float]:
        """Stop, then commit every channel that has samples and is not yet captured.

        Manual stop and window expiry both end here.

        Returns:
            Committed vitals after the sweep
        """
        with self._lock:
            self.stop()
            for channel, state in self._vitals.items():
                if state.samples and state.status is not VitalStatus.CAPTURED:
                    self._commit_locked(channel)
            committed = self.committed_vitals()
            logger.info(f"Capture session finished: {committed}")
            return committed

    def poll(self, now: Optional[float] = None) -> bool:
        """Check the window; finish the session the first time it has elapsed.

        Returns:
            True if this call finished the session
        """
        with self._lock:
            if not self._active or self._started_at is None:
                return False
            if self._now(now) - self._started_at < self._window_s:
                return False
            self.finish()
            return True

    def reset(self) -> None:
        """Return every channel to its initial WAITING state and deactivate."""
        with self._lock:
            self._active = False
            self._started_at = None
            self._vitals = {c: VitalState() for c in Channel}

    # ========================================================================
    # Samples & Commit
    # ========================================================================

    def ingest(self, reading: Reading) -> int:
        """Append the reading's values to every capturing channel present.

        Ignored entirely while inactive. Captured channels ignore samples until
        recaptured. Keys outside the channel set are ignored.

        Returns:
            Number of channels that took a sample
        """
        with self._lock:
            if not self._active:
                return 0

            updated = 0
            for key, value in reading.values.items():
                try:
                    channel = Channel(key)
                except ValueError:
                    continue
                state = self._vitals[channel]
                if state.status is VitalStatus.CAPTURED:
                    continue
                state.samples.append(value)
                state.current_value = value
                state.status = VitalStatus.CAPTURING
                updated += 1
            return updated

    def commit(self, channel: Channel) -> Optional[float]:
        """Commit one channel to the median of its samples.

        Returns:
            The committed value, or None if the channel has no samples
        """
        with self._lock:
            return self._commit_locked(channel)

    def _commit_locked(self, channel: Channel) -> Optional[float]:
        state = self._vitals[channel]
        if not state.samples:
            return None
        state.committed_value = upper_median(state.samples)
        state.status = VitalStatus.CAPTURED
        logger.debug(
            f"Committed {channel.key}={state.committed_value} from {len(state.samples)} samples"
        )
        return state.committed_value

    def recapture(self, channel: Channel) -> None:
        """Send a channel back to CAPTURING with its history cleared."""
        with self._lock:
            state = self._vitals[channel]
            state.status = VitalStatus.CAPTURING
            state.samples = []
            state.committed_value = None
            logger.info(f"Recapturing {channel.key}")

    # ========================================================================
    # Views
    # ========================================================================

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def window_s(self) -> float:
        return self._window_s

    def elapsed(self, now: Optional[float] = None) -> float:
        """Seconds since start, 0 if never started."""
        with self._lock:
            if self._started_at is None:
                return 0.0
            return max(0.0, self._now(now) - self._started_at)

    def progress(self, now: Optional[float] = None) -> float:
        """Window progress in percent, clamped to [0, 100]."""
        return min(self.elapsed(now) / self._window_s, 1.0) * 100.0

    def state(self, channel: Channel) -> VitalState:
        """Copy of one channel's capture state."""
        with self._lock:
            s = self._vitals[channel]
            return VitalState(
                status=s.status,
                samples=list(s.samples),
                current_value=s.current_value,
                committed_value=s.committed_value,
            )

    def samples(self, channel: Channel) -> List[float]:
        with self._lock:
            return list(self._vitals[channel].samples)

    def committed_vitals(self) -> Dict[str, float]:
        """Channel key -> committed value, omitting uncommitted channels."""
        with self._lock:
            return {
                channel.key: state.committed_value
                for channel, state in self._vitals.items()
                if state.committed_value is not None
            }

    def is_complete(self) -> bool:
        """True when every required channel is captured."""
        with self._lock:
            return all(
                self._vitals[c].status is VitalStatus.CAPTURED
                for c in Channel
                if c.required
            )

    def snapshot(self, now: Optional[float] = None) -> Dict[str, object]:
        """Plain-dict view of the whole session."""
        with self._lock:
            return {
                "active": self._active,
                "window_s": self._window_s,
                "elapsed_s": self.elapsed(now),
                "progress": self.progress(now),
                "complete": self.is_complete(),
                "vitals": {c.key: s.to_dict() for c, s in self._vitals.items()},
            }

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now


def resolve_channel(key: str) -> Channel:
    """Map a record key or enum name to a Channel.

    Raises:
        UnknownChannel: If key names no channel
    """
    try:
        return Channel.from_key(key)
    except ValueError as e:
        raise UnknownChannel(str(e)) from e
