"""Data models for the vitals acquisition engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from vitals_engine import protocol


class Channel(Enum):
    """Fixed set of vital channels. Values are the wire/record keys."""

    HEART_RATE = protocol.KEY_HEART_RATE
    SPO2 = protocol.KEY_SPO2
    TEMP_C = protocol.KEY_TEMP_C
    TEMP_F = protocol.KEY_TEMP_F
    ALCOHOL_DETECTED = protocol.KEY_ALCOHOL_DETECTED
    ALCOHOL_LEVEL = protocol.KEY_ALCOHOL_LEVEL
    BP_SYS = protocol.KEY_BP_SYS
    BP_DIA = protocol.KEY_BP_DIA
    WEIGHT_KG = protocol.KEY_WEIGHT_KG

    @property
    def key(self) -> str:
        """Record key for this channel (e.g. "heart_rate")."""
        return self.value

    @property
    def unit(self) -> str:
        """Display unit."""
        return _UNITS[self]

    @property
    def required(self) -> bool:
        """True if a visit is incomplete without this channel."""
        return self in REQUIRED_CHANNELS

    @classmethod
    def from_key(cls, key: str) -> "Channel":
        """Look up a channel by record key or enum name.

        Raises:
            ValueError: If key names no channel
        """
        try:
            return cls(key)
        except ValueError:
            pass
        try:
            return cls[key.upper()]
        except KeyError:
            raise ValueError(f"Unknown channel: {key!r}") from None


_UNITS: Dict[Channel, str] = {
    Channel.HEART_RATE: "bpm",
    Channel.SPO2: "%",
    Channel.TEMP_C: "°C",
    Channel.TEMP_F: "°F",
    Channel.ALCOHOL_DETECTED: "",
    Channel.ALCOHOL_LEVEL: "",
    Channel.BP_SYS: "mmHg",
    Channel.BP_DIA: "mmHg",
    Channel.WEIGHT_KG: "kg",
}

REQUIRED_CHANNELS: frozenset = frozenset(
    {Channel.BP_SYS, Channel.BP_DIA, Channel.HEART_RATE, Channel.SPO2, Channel.TEMP_C}
)

CHANNEL_KEYS: frozenset = frozenset(c.key for c in Channel)


class SourceState(Enum):
    """Which device source is live from the engine's perspective."""

    DISCONNECTED = "disconnected"
    HARDWARE = "hardware"
    SIMULATED = "simulated"


class VitalStatus(Enum):
    """Per-channel capture status."""

    WAITING = "waiting"
    CAPTURING = "capturing"
    CAPTURED = "captured"


@dataclass
class Reading:
    """One instant's structured sensor values.

    Attributes:
        values: Channel key -> numeric value. The key set depends on the wire
                format the line arrived in.
        ts: UTC timestamp when the line was parsed (display/freshness only).
        raw: Original line text, kept for audit.
    """

    values: Dict[str, float] = field(default_factory=dict)
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw: str = ""

    def copy(self) -> "Reading":
        """Independent copy; consumers never share the values dict."""
        return Reading(values=dict(self.values), ts=self.ts, raw=self.raw)

    def to_dict(self) -> Dict[str, object]:
        """Flat dict of channel values plus ``t`` (epoch ms) and ``raw``."""
        out: Dict[str, object] = dict(self.values)
        out["t"] = int(self.ts.timestamp() * 1000)
        out["raw"] = self.raw
        return out


@dataclass
class VitalState:
    """Capture state of one channel within a session.

    Invariants: a committed value implies CAPTURED status, and samples are
    emptied whenever the channel goes back to CAPTURING.
    """

    status: VitalStatus = VitalStatus.WAITING
    samples: List[float] = field(default_factory=list)
    current_value: Optional[float] = None
    committed_value: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "current_value": self.current_value,
            "committed_value": self.committed_value,
            "samples": len(self.samples),
        }


@dataclass
class SerialSettings:
    """Connection settings for a hardware source.

    Attributes:
        port: Serial device name (e.g. "/dev/ttyACM0", "COM3").
        baud: Bit rate. Default 9600 matches the bedside firmware.
        timeout_s: Per-read timeout in seconds.
    """

    port: str
    baud: int = protocol.DEFAULT_BAUD
    timeout_s: float = protocol.DEFAULT_READ_TIMEOUT_S

    def __post_init__(self) -> None:
        """Validate settings."""
        if not self.port:
            raise ValueError("port must be a non-empty device name")
        if self.baud <= 0:
            raise ValueError(f"baud must be positive, got {self.baud}")
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s}")
