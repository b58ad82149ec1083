"""Pure functions for parsing device lines into readings.

A line that matches no known format is not an error: serial links deliver
partial writes and boot banners, and those lines are dropped.
"""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Dict, Optional

from vitals_engine import protocol
from vitals_engine.models import Reading

logger = logging.getLogger(__name__)


def parse_line(line: str) -> Optional[Reading]:
    """Parse one device line into a Reading.

    Formats are tried in priority order, first match wins: JSON object,
    six-field CSV, four-field CSV, two-field CSV.

    Args:
        line: Raw line text (terminator may or may not be stripped)

    Returns:
        Reading stamped with the current UTC time, or None if the line is not
        recognized
    """
    text = line.strip()
    if not text:
        return None

    values = parse_structured(text)
    if values is None:
        values = parse_csv(text)

    if values is None:
        logger.debug(f"Unrecognized line dropped: {text[:60]!r}")
        return None

    return Reading(values=values, ts=datetime.now(timezone.utc), raw=text)


def parse_structured(text: str) -> Optional[Dict[str, float]]:
    """Decode a JSON object line into channel values.

    Flat channel keys are taken as-is; kiosk aliases (``hr``, ``spo2``,
    ``tempC``) and the nested ``bp`` object are mapped onto channel keys.
    Numbers keep the precision they were sent with.

    Args:
        text: Stripped line

    Returns:
        Channel values, or None if the line is not a JSON object carrying at
        least one numeric value
    """
    if not text.startswith("{"):
        return None

    try:
        obj = json.loads(text, parse_constant=_reject_constant)
    except ValueError:
        return None

    if not isinstance(obj, dict):
        return None

    values: Dict[str, float] = {}
    for key, raw_value in obj.items():
        if key in protocol.JSON_IGNORED_KEYS:
            continue

        if key == protocol.JSON_BP_OBJECT and isinstance(raw_value, dict):
            for sub_key, channel_key in protocol.JSON_BP_KEYS.items():
                if _is_number(raw_value.get(sub_key)):
                    values[channel_key] = raw_value[sub_key]
            continue

        if _is_number(raw_value):
            values[protocol.JSON_KEY_ALIASES.get(key, key)] = raw_value

    return values or None


def parse_csv(text: str) -> Optional[Dict[str, float]]:
    """Decode a comma-separated integer line (6, 4 or 2 fields).

    Args:
        text: Stripped line

    Returns:
        Channel values as ints, or None if no CSV format matches
    """
    for pattern, fields in protocol.CSV_FORMATS:
        match = pattern.match(text)
        if match:
            return {name: int(group) for name, group in zip(fields, match.groups())}
    return None


def _is_number(value: object) -> bool:
    # bool is an int subclass; true/false flags are not channel values
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    # 1e999 decodes to inf
    return math.isfinite(value)


def _reject_constant(name: str) -> float:
    # NaN, Infinity and -Infinity are not valid JSON
    raise ValueError(f"non-finite constant {name}")
