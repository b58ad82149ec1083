"""Single-flight gate for "wait for the next fresh reading"."""

import logging
import threading
from typing import Optional

from vitals_engine import protocol
from vitals_engine.errors import CaptureBusy, CaptureTimeout, NoDevice
from vitals_engine.models import Reading
from vitals_engine.sources import EVENT_DATA, DeviceSource

logger = logging.getLogger(__name__)


class _OneShot:
    """Slot resolved by the first reading delivered to it."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reading: Optional[Reading] = None
        self._lock = threading.Lock()

    def __call__(self, reading: Reading) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reading = reading
            self._event.set()

    def wait(self, timeout_s: float) -> Optional[Reading]:
        if not self._event.wait(timeout=timeout_s):
            return None
        return self._reading


class CaptureGate:
    """Allows at most one outstanding next-reading acquisition.

    A second request while one is outstanding fails immediately with
    CaptureBusy; requests are never queued or merged.
    """

    def __init__(self) -> None:
        self._in_flight = False
        self._lock = threading.Lock()

    @property
    def in_flight(self) -> bool:
        """True while an acquisition is outstanding."""
        with self._lock:
            return self._in_flight

    def acquire_next(
        self,
        source: Optional[DeviceSource],
        timeout_s: float = protocol.CAPTURE_TIMEOUT_S,
    ) -> Reading:
        """Block until the source emits its next parseable reading.

        Args:
            source: Live device source, or None if nothing is connected
            timeout_s: Maximum seconds to wait

        Returns:
            The first reading emitted after the call

        Raises:
            NoDevice: If source is None or not live (checked before busy)
            CaptureBusy: If another acquisition is outstanding
            CaptureTimeout: If no reading arrives within timeout_s
        """
        if source is None or not source.is_live:
            raise NoDevice("No device connected - cannot capture sensor data")

        with self._lock:
            if self._in_flight:
                raise CaptureBusy("Capture already in progress")
            self._in_flight = True

        slot = _OneShot()
        source.subscribe(EVENT_DATA, slot)
        try:
            reading = slot.wait(timeout_s)
        finally:
            source.unsubscribe(EVENT_DATA, slot)
            with self._lock:
                self._in_flight = False

        if reading is None:
            logger.warning(f"Timed out after {timeout_s}s waiting for a reading")
            raise CaptureTimeout(f"Timed out waiting for a reading ({timeout_s}s)")

        logger.debug(f"Acquired reading: {reading.values}")
        return reading
