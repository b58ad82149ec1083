"""
vitals_engine - Vitals acquisition and capture-session engine for the intake kiosk.

Parses bedside device lines, keeps the latest reading, serves single-flight
"next fresh reading" requests and runs fixed-window capture sessions over real
serial hardware or a simulator.
"""

from vitals_engine.engine import VitalsEngine
from vitals_engine.errors import (
    CaptureBusy,
    CaptureTimeout,
    NoDevice,
    NoReading,
    SerialIOError,
    UnknownChannel,
    VitalsEngineError,
)
from vitals_engine.models import (
    Channel,
    Reading,
    SerialSettings,
    SourceState,
    VitalState,
    VitalStatus,
)
from vitals_engine.parsing import parse_line
from vitals_engine.session import CaptureSession
from vitals_engine.sources import DeviceSource, HardwareSource, SimulatedSource

__version__ = "0.1.0"

__all__ = [
    "VitalsEngine",
    "CaptureSession",
    "DeviceSource",
    "HardwareSource",
    "SimulatedSource",
    "parse_line",
    "Channel",
    "Reading",
    "SerialSettings",
    "SourceState",
    "VitalState",
    "VitalStatus",
    "VitalsEngineError",
    "NoDevice",
    "CaptureBusy",
    "CaptureTimeout",
    "SerialIOError",
    "NoReading",
    "UnknownChannel",
]
