"""Fake serial port that simulates the bedside vitals board.

The board prints one reading per line, LF terminated, in whichever format its
firmware speaks (JSON or comma-separated integers). Tests push lines with
feed(), or hand a line factory to stream lines at a fixed period.
"""

import logging
import queue
import threading
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class FakeSerial:
    """Deterministic stand-in for serial.Serial (SerialLike protocol).

    Implements:
    - Queued device output read back by readline() with a short timeout
    - Optional background streaming from a line factory
    - Simulated unplug: readline() raises once fail_reads() is called
    - reset_input_buffer() discards pending output, like a real port
    """

    def __init__(
        self,
        line_factory: Optional[Callable[[], str]] = None,
        period_s: float = 0.05,
        timeout: float = 0.05,
    ) -> None:
        """Initialize fake port (opened).

        Args:
            line_factory: If given, called every period_s once start_streaming()
                          runs; each result is sent as a line.
            period_s: Streaming period in seconds
            timeout: readline() timeout in seconds
        """
        self.line_factory = line_factory
        self.period_s = period_s
        self.timeout = timeout

        # Output queue for lines to send to "host"
        self._output_queue: "queue.Queue[bytes]" = queue.Queue()

        self._fail_reads = False
        self.reads = 0

        # Threading for streaming
        self._stream_thread: Optional[threading.Thread] = None
        self._stop_streaming = threading.Event()

        self.is_open = True

    # ========================================================================
    # SerialLike
    # ========================================================================

    def readline(self) -> bytes:
        """Read one line from device output.

        Returns:
            Line as bytes with LF terminator, or b"" on timeout
        """
        if not self.is_open:
            raise RuntimeError("Port is closed")

        if self._fail_reads:
            raise OSError("device reports readiness to read but returned no data")

        try:
            line = self._output_queue.get(timeout=self.timeout)
        except queue.Empty:
            return b""

        self.reads += 1
        logger.debug(f"FakeSerial sending line: {line!r}")
        return line

    def reset_input_buffer(self) -> None:
        """Discard pending device output."""
        while True:
            try:
                self._output_queue.get_nowait()
            except queue.Empty:
                break
        logger.debug("FakeSerial input buffer flushed")

    def close(self) -> None:
        """Close the fake serial port."""
        self.is_open = False
        self.stop_streaming()
        logger.debug("FakeSerial closed")

    # ========================================================================
    # Test Controls
    # ========================================================================

    def feed(self, line: str) -> None:
        """Queue one line of device output (LF appended)."""
        self.feed_bytes(line.encode("utf-8") + b"\n")

    def feed_many(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.feed(line)

    def feed_bytes(self, data: bytes) -> None:
        """Queue raw bytes exactly as the device would send them."""
        self._output_queue.put(data)

    def fail_reads(self) -> None:
        """Make every following readline() fail, as an unplugged device does."""
        self._fail_reads = True

    def start_streaming(self) -> None:
        """Start emitting line_factory() output every period_s."""
        if self.line_factory is None:
            raise ValueError("line_factory is required for streaming")
        if self._stream_thread and self._stream_thread.is_alive():
            return

        self._stop_streaming.clear()
        self._stream_thread = threading.Thread(
            target=self._stream_loop,
            name="FakeSerialStream",
            daemon=True,
        )
        self._stream_thread.start()

    def stop_streaming(self) -> None:
        """Stop the streaming thread if running."""
        self._stop_streaming.set()
        thread = self._stream_thread
        self._stream_thread = None
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def _stream_loop(self) -> None:
        assert self.line_factory is not None
        while not self._stop_streaming.wait(timeout=self.period_s):
            self.feed(self.line_factory())
