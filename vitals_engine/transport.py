"""Serial transport layer for the vitals device."""

import importlib.util
import logging
from typing import List, Optional, Protocol

from vitals_engine import protocol
from vitals_engine.errors import SerialIOError
from vitals_engine.models import SerialSettings

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def readline(self) -> bytes:
        """Read a line from serial port."""
        ...

    def reset_input_buffer(self) -> None:
        """Flush input buffer."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


def serial_available() -> bool:
    """Check whether this environment can talk to serial hardware at all.

    Independent of any connection attempt; only probes for pyserial.
    """
    return importlib.util.find_spec("serial") is not None


def list_ports() -> List[str]:
    """List candidate serial device names (empty if pyserial is missing)."""
    if not serial_available():
        return []

    from serial.tools import list_ports as serial_list_ports  # type: ignore

    return sorted(p.device for p in serial_list_ports.comports())


class Transport:
    """Wrapper around pyserial that yields decoded text lines."""

    def __init__(self, serial_port: SerialLike) -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeSerial for testing)
        """
        self._port = serial_port

    @classmethod
    def open(cls, settings: SerialSettings) -> "Transport":
        """Open a real serial port (requires pyserial).

        Args:
            settings: Port name, baud rate and read timeout

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            SerialIOError: If port cannot be opened
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise SerialIOError("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.Serial(
                port=settings.port,
                baudrate=settings.baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=settings.timeout_s,
            )
            logger.info(
                f"Opened serial port {settings.port} at {settings.baud} baud, "
                f"timeout={settings.timeout_s}s"
            )
            return cls(ser)
        except Exception as e:
            raise SerialIOError(
                f"Failed to open {settings.port} at {settings.baud} baud: {e}"
            ) from e

    def close(self) -> None:
        """Close the serial port."""
        if self._port.is_open:
            self._port.close()
            logger.info("Closed serial port")

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def readline(self) -> Optional[str]:
        """Read one newline-terminated line from the device.

        Returns:
            Line with CR/LF stripped, or None on read timeout

        Raises:
            SerialIOError: If port is closed or read fails
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            line_bytes = self._port.readline()
        except Exception as e:
            raise SerialIOError(f"Failed to read line: {e}") from e

        if not line_bytes:
            return None

        line = line_bytes.decode(protocol.LINE_ENCODING, errors="replace").rstrip("\r\n")
        logger.debug(f"Received line: {line!r}")
        return line

    def flush_input(self) -> None:
        """Discard pending input (stale lines from before connect).

        Raises:
            SerialIOError: If port is closed
        """
        if not self._port.is_open:
            raise SerialIOError("Serial port is not open")

        try:
            self._port.reset_input_buffer()
            logger.debug("Flushed input buffer")
        except Exception as e:
            raise SerialIOError(f"Failed to flush input: {e}") from e
