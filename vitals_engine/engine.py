"""Engine facade: owns the cache, gate, session and the one live device source."""

import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from vitals_engine import protocol
from vitals_engine.cache import ReadingCache
from vitals_engine.errors import NoReading, SerialIOError
from vitals_engine.gate import CaptureGate
from vitals_engine.models import Reading, SerialSettings, SourceState
from vitals_engine.session import CaptureSession, resolve_channel
from vitals_engine.sources import (
    EVENT_DATA,
    EVENT_ERROR,
    DeviceSource,
    HardwareSource,
    SimulatedSource,
)
from vitals_engine.transport import SerialLike

logger = logging.getLogger(__name__)


class ReadingSink(Protocol):
    """Persistence collaborator that stores a reading with optional patient info."""

    def save_reading(
        self, reading: Reading, patient: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        ...


class VitalsEngine:
    """High-level engine orchestrating sources, cache, single-flight capture and sessions.

    Only one source is live at a time: starting the simulator closes the
    hardware connection and connecting hardware stops the simulator.
    Connections are never retried automatically.
    """

    def __init__(
        self,
        capture_timeout_s: float = protocol.CAPTURE_TIMEOUT_S,
        window_s: float = protocol.CAPTURE_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize engine with no source attached.

        Args:
            capture_timeout_s: Default timeout for acquire_next()
            window_s: Capture session window in seconds
            clock: Monotonic time source for the session (injectable for tests)
        """
        self._capture_timeout_s = capture_timeout_s
        self._cache = ReadingCache()
        self._gate = CaptureGate()
        self._session = CaptureSession(window_s=window_s, clock=clock)

        self._source: Optional[DeviceSource] = None
        self._state_lock = threading.RLock()

        # Store connection params for reconnection
        self._last_settings: Optional[SerialSettings] = None
        self._last_error: Optional[str] = None

    # ========================================================================
    # Source Management
    # ========================================================================

    def connect(
        self,
        settings: Optional[SerialSettings] = None,
        serial_port: Optional[SerialLike] = None,
    ) -> None:
        """Connect to hardware, stopping the simulator if it is running.

        Args:
            settings: Port/baud/timeout of the device. Required if serial_port not given.
            serial_port: Pre-configured serial port object (for testing).

        Raises:
            SerialIOError: If hardware is already connected or the port cannot be opened
        """
        with self._state_lock:
            if self.source_state is SourceState.HARDWARE:
                raise SerialIOError("Already connected. Disconnect first.")

            self._close_source()

            source = HardwareSource(settings=settings, serial_port=serial_port)
            if settings is not None:
                self._last_settings = settings
            self._attach(source)
            try:
                source.start()
            except SerialIOError:
                self._detach(source)
                raise
            self._last_error = None

    def reconnect(self) -> None:
        """Reconnect using the last settings passed to connect().

        Raises:
            SerialIOError: If there is no previous connection or it fails again
        """
        if self._last_settings is None:
            raise SerialIOError("Cannot reconnect: no previous connection")

        logger.info(f"Reconnecting to {self._last_settings.port}...")
        with self._state_lock:
            if self.source_state is SourceState.HARDWARE:
                self.disconnect()
            self.connect(settings=self._last_settings)

    def start_simulation(self, seed: Optional[int] = None) -> None:
        """Start the simulator, closing hardware if connected. No-op if already simulating."""
        with self._state_lock:
            if self.source_state is SourceState.SIMULATED:
                logger.debug("Simulation already running")
                return

            self._close_source()

            source = SimulatedSource(seed=seed)
            self._attach(source)
            source.start()

    def stop_simulation(self) -> None:
        """Stop the simulator if it is the active source. Idempotent."""
        with self._state_lock:
            if isinstance(self._source, SimulatedSource):
                self._close_source()

    def disconnect(self) -> None:
        """Close whichever source is attached. Idempotent."""
        with self._state_lock:
            self._close_source()

    @property
    def source(self) -> Optional[DeviceSource]:
        return self._source

    @property
    def source_state(self) -> SourceState:
        """Which source is live right now."""
        source = self._source
        if source is None or not source.is_live:
            return SourceState.DISCONNECTED
        return source.kind

    @property
    def last_error(self) -> Optional[str]:
        """Message of the most recent source error, cleared on connect."""
        return self._last_error

    def _attach(self, source: DeviceSource) -> None:
        source.subscribe(EVENT_DATA, self._on_data)
        source.subscribe(EVENT_ERROR, self._on_error)
        self._source = source

    def _detach(self, source: DeviceSource) -> None:
        source.unsubscribe(EVENT_DATA, self._on_data)
        source.unsubscribe(EVENT_ERROR, self._on_error)
        if self._source is source:
            self._source = None

    def _close_source(self) -> None:
        source = self._source
        if source is None:
            return
        source.close()
        self._detach(source)

    def _on_data(self, reading: Reading) -> None:
        self._cache.offer(reading)
        self._session.ingest(reading)

    def _on_error(self, error: Exception) -> None:
        # Source has already marked itself not live; no automatic retry
        logger.error(f"Device source error: {error}")
        self._last_error = str(error)

    # ========================================================================
    # Reading Cache & Single-Flight Capture
    # ========================================================================

    def latest(self) -> Optional[Reading]:
        """Most recent cached reading (copy), or None."""
        return self._cache.latest()

    @property
    def collecting(self) -> bool:
        return self._cache.collecting

    def pause_collecting(self) -> None:
        self._cache.pause()

    def resume_collecting(self) -> None:
        self._cache.resume()

    @property
    def capture_in_flight(self) -> bool:
        return self._gate.in_flight

    def acquire_next(self, timeout_s: Optional[float] = None) -> Reading:
        """Wait for the next fresh reading from the live source (single-flight).

        Raises:
            NoDevice: If no source is live
            CaptureBusy: If another acquisition is outstanding
            CaptureTimeout: If no reading arrives in time
        """
        if timeout_s is None:
            timeout_s = self._capture_timeout_s
        return self._gate.acquire_next(self._source, timeout_s=timeout_s)

    def capture_and_save(
        self,
        sink: ReadingSink,
        patient: Optional[Mapping[str, Any]] = None,
        timeout_s: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Acquire one fresh reading and hand it to the sink.

        Returns:
            Whatever the sink returns for the stored record
        """
        reading = self.acquire_next(timeout_s=timeout_s)
        logger.info(f"Captured reading for save: {reading.values}")
        return sink.save_reading(reading, patient)

    def save_latest(
        self,
        sink: ReadingSink,
        patient: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Hand the cached latest reading to the sink, then pause the cache.

        Raises:
            NoReading: If nothing has been cached yet
        """
        reading = self._cache.latest()
        if reading is None:
            raise NoReading("No reading available yet")

        saved = sink.save_reading(reading, patient)
        self._cache.pause()
        return saved

    # ========================================================================
    # Capture Session
    # ========================================================================

    @property
    def session(self) -> CaptureSession:
        return self._session

    def start_capture(self) -> None:
        self._session.start()

    def stop_capture(self) -> Dict[str, float]:
        """Stop the session and commit every channel with samples."""
        return self._session.finish()

    def poll_capture(self) -> bool:
        """Enforce the capture window; True if this call ended the session."""
        return self._session.poll()

    def commit_vital(self, key: str) -> Optional[float]:
        """Commit one channel by key.

        Raises:
            UnknownChannel: If key names no channel
        """
        return self._session.commit(resolve_channel(key))

    def recapture_vital(self, key: str) -> None:
        """Clear one channel and capture it again.

        Raises:
            UnknownChannel: If key names no channel
        """
        self._session.recapture(resolve_channel(key))

    def committed_vitals(self) -> Dict[str, float]:
        """Committed vitals as channel key -> value, uncommitted channels omitted."""
        return self._session.committed_vitals()

    def status(self) -> Dict[str, Any]:
        """Diagnostic snapshot."""
        latest = self._cache.latest()
        source = self._source
        return {
            "source": self.source_state.value,
            "port": source.port_name if isinstance(source, HardwareSource) else None,
            "hardware_supported": HardwareSource.is_supported(),
            "collecting": self._cache.collecting,
            "capture_in_flight": self._gate.in_flight,
            "capturing": self._session.active,
            "latest": latest.to_dict() if latest else None,
            "last_error": self._last_error,
        }

    def shutdown(self) -> None:
        """Stop the session and close any source."""
        self._session.stop()
        self.disconnect()
