"""Device sources: real serial hardware and a deterministic simulator.

Both variants expose the same contract: start(), close(), is_live, and two
named event streams, "data" (callback receives a Reading) and "error"
(callback receives the exception). Callers hold only the DeviceSource type.
"""

import json
import logging
import random
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from vitals_engine import parsing, protocol
from vitals_engine.errors import SerialIOError
from vitals_engine.models import Reading, SerialSettings, SourceState
from vitals_engine.transport import SerialLike, Transport, list_ports, serial_available

logger = logging.getLogger(__name__)

EVENT_DATA = "data"
EVENT_ERROR = "error"

Callback = Callable[[object], None]


class DeviceSource(ABC):
    """Abstract stream of Readings plus a stream of errors."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callback]] = {EVENT_DATA: [], EVENT_ERROR: []}
        self._listeners_lock = threading.Lock()

    # ========================================================================
    # Event Streams
    # ========================================================================

    def subscribe(self, event: str, callback: Callback) -> None:
        """Register callback for "data" or "error" events.

        Raises:
            ValueError: If event is not a known stream name
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown event {event!r}, expected 'data' or 'error'")
        with self._listeners_lock:
            self._listeners[event].append(callback)

    def unsubscribe(self, event: str, callback: Callback) -> None:
        """Remove a callback. Removing one that is not registered is a no-op."""
        with self._listeners_lock:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

    def _emit_data(self, reading: Reading) -> None:
        # Every subscriber gets its own copy
        for callback in self._snapshot_listeners(EVENT_DATA):
            try:
                callback(reading.copy())
            except Exception as e:
                logger.warning(f"Data subscriber {callback!r} failed: {e}", exc_info=True)

    def _emit_error(self, error: Exception) -> None:
        for callback in self._snapshot_listeners(EVENT_ERROR):
            try:
                callback(error)
            except Exception as e:
                logger.warning(f"Error subscriber {callback!r} failed: {e}", exc_info=True)

    def _snapshot_listeners(self, event: str) -> List[Callback]:
        with self._listeners_lock:
            return list(self._listeners[event])

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    @abstractmethod
    def kind(self) -> SourceState:
        """SourceState this source represents when live."""

    @property
    @abstractmethod
    def is_live(self) -> bool:
        """True while the source may emit data events."""

    @abstractmethod
    def start(self) -> None:
        """Begin emitting readings."""

    @abstractmethod
    def close(self) -> None:
        """Stop emitting readings. Idempotent."""


class HardwareSource(DeviceSource):
    """Reads newline-delimited lines from a serial device on a background thread."""

    def __init__(
        self,
        settings: Optional[SerialSettings] = None,
        serial_port: Optional[SerialLike] = None,
    ) -> None:
        """Initialize (does not open the port).

        Args:
            settings: Port/baud/timeout for opening a real device.
            serial_port: Pre-configured serial port object (for testing). If
                        provided, settings are ignored.
        """
        super().__init__()
        if settings is None and serial_port is None:
            raise ValueError("Must provide either 'settings' or 'serial_port'")

        self._settings = settings
        self._serial_port = serial_port
        self._transport: Optional[Transport] = None
        self._live = False

        self._reader_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()

    @staticmethod
    def is_supported() -> bool:
        """Capability probe: can this environment access serial hardware at all."""
        return serial_available()

    @staticmethod
    def list_ports() -> List[str]:
        """Candidate serial device names."""
        return list_ports()

    @property
    def kind(self) -> SourceState:
        return SourceState.HARDWARE

    @property
    def is_live(self) -> bool:
        return self._live

    @property
    def port_name(self) -> Optional[str]:
        """Configured device name, if opened from settings."""
        return self._settings.port if self._settings else None

    def start(self) -> None:
        """Open the connection and start the reader thread.

        Raises:
            SerialIOError: If the port cannot be opened. An "error" event is
                          emitted as well.
        """
        with self._state_lock:
            if self._live:
                logger.debug("Hardware source already live")
                return

            try:
                if self._serial_port is not None:
                    transport = Transport(self._serial_port)
                else:
                    assert self._settings is not None
                    transport = Transport.open(self._settings)
                transport.flush_input()
            except SerialIOError as e:
                logger.error(f"Hardware source failed to start: {e}")
                self._emit_error(e)
                raise

            self._transport = transport
            self._live = True
            self._stop_event.clear()
            self._reader_thread = threading.Thread(
                target=self._reader_loop,
                args=(transport,),
                name="VitalsSerialReader",
                daemon=True,
            )
            self._reader_thread.start()
            logger.info("Hardware source connected")

    def close(self) -> None:
        """Stop the reader thread and close the port. Safe if never opened."""
        with self._state_lock:
            was_live = self._live
            self._live = False
            self._stop_event.set()
            thread = self._reader_thread
            self._reader_thread = None

        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=protocol.THREAD_JOIN_TIMEOUT_S)
            if thread.is_alive():
                logger.warning("Serial reader thread did not stop cleanly")

        self._close_transport()
        if was_live:
            logger.info("Hardware source closed")

    def _close_transport(self) -> None:
        transport = self._transport
        self._transport = None
        if transport is None:
            return
        try:
            transport.close()
        except Exception as e:
            logger.warning(f"Error closing serial port: {e}")

    def _reader_loop(self, transport: Transport) -> None:
        """Background thread: read lines, parse, emit readings."""
        logger.info(f"Serial reader loop started (thread {threading.get_ident()})")

        while not self._stop_event.is_set():
            try:
                line = transport.readline()
            except SerialIOError as e:
                if self._stop_event.is_set():
                    break  # port closed under us by close()
                logger.error(f"Serial read failed, source disconnected: {e}", exc_info=True)
                self._live = False
                self._stop_event.set()
                self._close_transport()
                self._emit_error(e)
                break

            if line is None:
                continue

            reading = parsing.parse_line(line)
            if reading is None:
                continue

            if self._stop_event.is_set():
                break
            self._emit_data(reading)

        logger.info("Serial reader loop stopped")


# Simulated channels: (key, baseline, total spread, decimal places)
SIM_CHANNELS: Tuple[Tuple[str, float, float, int], ...] = (
    (protocol.KEY_BP_SYS, 120.0, 20.0, 0),
    (protocol.KEY_BP_DIA, 80.0, 15.0, 0),
    (protocol.KEY_HEART_RATE, 75.0, 20.0, 0),
    (protocol.KEY_SPO2, 98.0, 4.0, 1),
    (protocol.KEY_TEMP_C, 36.8, 0.8, 1),
    (protocol.KEY_WEIGHT_KG, 70.0, 10.0, 1),
)


class SimulatedSource(DeviceSource):
    """Synthesizes plausible vitals at a randomized 100-200 ms cadence.

    Pass a seed for a reproducible sequence of periods and values.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        super().__init__()
        self._rng = random.Random(seed)
        self._period_s: Optional[float] = None
        self._running = False

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()

    @property
    def kind(self) -> SourceState:
        return SourceState.SIMULATED

    @property
    def is_live(self) -> bool:
        return self._running

    @property
    def period_s(self) -> Optional[float]:
        """Tick period chosen for the current (or last) run."""
        return self._period_s

    def start(self) -> None:
        """Start ticking. No-op if already running."""
        with self._state_lock:
            if self._running:
                return

            self._period_s = self._rng.uniform(protocol.SIM_PERIOD_MIN_S, protocol.SIM_PERIOD_MAX_S)
            self._running = True
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._tick_loop,
                args=(self._period_s,),
                name="VitalsSimulator",
                daemon=True,
            )
            self._thread.start()
            logger.info(f"Simulation started (period {self._period_s * 1000:.0f} ms)")

    def close(self) -> None:
        """Stop ticking. Idempotent."""
        with self._state_lock:
            was_running = self._running
            self._running = False
            self._stop_event.set()
            thread = self._thread
            self._thread = None

        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=protocol.THREAD_JOIN_TIMEOUT_S)

        if was_running:
            logger.info("Simulation stopped")

    stop = close

    def generate_reading(self) -> Reading:
        """Draw one reading: baseline plus bounded jitter, rounded per channel."""
        values: Dict[str, float] = {}
        for key, baseline, spread, digits in SIM_CHANNELS:
            value = baseline + (self._rng.random() - 0.5) * spread
            values[key] = int(round(value)) if digits == 0 else round(value, digits)

        return Reading(
            values=values,
            ts=datetime.now(timezone.utc),
            raw=json.dumps(values),
        )

    def _tick_loop(self, period_s: float) -> None:
        while not self._stop_event.wait(timeout=period_s):
            self._emit_data(self.generate_reading())
