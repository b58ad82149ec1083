"""Custom exceptions for the vitals acquisition engine."""


class VitalsEngineError(Exception):
    """Base exception for all vitals engine errors."""

    pass


class NoDevice(VitalsEngineError):
    """Raised when an operation needs a live device source and none is active."""

    pass


class CaptureBusy(VitalsEngineError):
    """Raised when a single-flight acquisition is already outstanding."""

    pass


class CaptureTimeout(VitalsEngineError):
    """Raised when no reading arrives before the acquisition timeout."""

    pass


class SerialIOError(VitalsEngineError):
    """Raised when the device connection cannot be set up or fails mid-stream.

    The source is treated as disconnected afterwards and must be explicitly
    reconnected.
    """

    pass


class NoReading(VitalsEngineError):
    """Raised when the reading cache is empty but a reading is required."""

    pass


class UnknownChannel(VitalsEngineError):
    """Raised when a channel key is not part of the fixed vital set."""

    pass
