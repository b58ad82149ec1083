"""Wire formats, channel keys and timing constants for the vitals device.

The bedside board prints one reading per line, newline terminated. Three
firmware generations are in the field:

- kiosk firmware: a JSON object per line
- six-sensor firmware: ``heart_rate,spo,TempC,TempF,alcohol_detected,alcohol_level``
- four-sensor firmware: ``heart_rate,spo,TempC,TempF``
- legacy pulse-oximeter: ``heart_rate,spo``
"""

import re
from typing import Dict, Final, Tuple

# ============================================================================
# Line Termination
# ============================================================================

LINE_TERMINATOR: Final[bytes] = b"\n"

# Serial text is ASCII in practice; anything else is replaced, not fatal
LINE_ENCODING: Final[str] = "utf-8"

# ============================================================================
# Channel Keys
# ============================================================================

KEY_HEART_RATE: Final[str] = "heart_rate"
KEY_SPO2: Final[str] = "spo"
KEY_TEMP_C: Final[str] = "TempC"
KEY_TEMP_F: Final[str] = "TempF"
KEY_ALCOHOL_DETECTED: Final[str] = "alcohol_detected"
KEY_ALCOHOL_LEVEL: Final[str] = "alcohol_level"
KEY_BP_SYS: Final[str] = "bpSys"
KEY_BP_DIA: Final[str] = "bpDia"
KEY_WEIGHT_KG: Final[str] = "weightKg"

# Kiosk firmware JSON uses short names for some channels
JSON_KEY_ALIASES: Final[Dict[str, str]] = {
    "hr": KEY_HEART_RATE,
    "spo2": KEY_SPO2,
    "tempC": KEY_TEMP_C,
    "tempF": KEY_TEMP_F,
}

# Nested blood pressure object: {"bp": {"sys": 120, "dia": 80}}
JSON_BP_OBJECT: Final[str] = "bp"
JSON_BP_KEYS: Final[Dict[str, str]] = {
    "sys": KEY_BP_SYS,
    "dia": KEY_BP_DIA,
}

# Device-side timestamp; the host stamps its own time instead
JSON_IGNORED_KEYS: Final[frozenset] = frozenset({"ts", "t", "raw"})

# ============================================================================
# CSV Field Orders (priority order: longest first)
# ============================================================================

CSV6_FIELDS: Final[Tuple[str, ...]] = (
    KEY_HEART_RATE,
    KEY_SPO2,
    KEY_TEMP_C,
    KEY_TEMP_F,
    KEY_ALCOHOL_DETECTED,
    KEY_ALCOHOL_LEVEL,
)
CSV4_FIELDS: Final[Tuple[str, ...]] = CSV6_FIELDS[:4]
CSV2_FIELDS: Final[Tuple[str, ...]] = CSV6_FIELDS[:2]


def _csv_pattern(count: int) -> "re.Pattern[str]":
    """Build an anchored pattern of ``count`` comma-separated ASCII integers."""
    field = r"\s*([0-9]+)\s*"
    return re.compile(r"^" + ",".join([field] * count) + r"$")


RE_CSV6_LINE: Final[re.Pattern[str]] = _csv_pattern(6)
RE_CSV4_LINE: Final[re.Pattern[str]] = _csv_pattern(4)
RE_CSV2_LINE: Final[re.Pattern[str]] = _csv_pattern(2)

CSV_FORMATS: Final[Tuple[Tuple[re.Pattern, Tuple[str, ...]], ...]] = (
    (RE_CSV6_LINE, CSV6_FIELDS),
    (RE_CSV4_LINE, CSV4_FIELDS),
    (RE_CSV2_LINE, CSV2_FIELDS),
)

# ============================================================================
# Serial Defaults
# ============================================================================

DEFAULT_BAUD: Final[int] = 9600

# Short read timeout keeps the reader thread responsive to close()
DEFAULT_READ_TIMEOUT_S: Final[float] = 0.2

# ============================================================================
# Timing Constants (seconds)
# ============================================================================

# Single-flight "next fresh reading" timeout
CAPTURE_TIMEOUT_S: Final[float] = 5.0

# Capture session window
CAPTURE_WINDOW_S: Final[float] = 10.0

# Simulator tick period range; one value is picked per run
SIM_PERIOD_MIN_S: Final[float] = 0.100
SIM_PERIOD_MAX_S: Final[float] = 0.200

# Reader thread join timeout on close
THREAD_JOIN_TIMEOUT_S: Final[float] = 5.0
