"""Fusion of partial telemetry fragments into one total snapshot.

The store holds independent battery, altitude and state messages, each with
its own producer timestamp. `fuse` picks the newest fragment of every kind and
derives a `Telemetry` where every field has a value. Fields that no fragment
kind supplies yet (lat/lon, velocity, attitude) are explicit defaults, and the
`has_state_data` flag records whether `armed` was observed or defaulted.
"""
import time
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from dronedash.schemas import (
    AltitudeReading, Attitude, BatteryReading, Position, StateReading,
    Telemetry, TelemetryFragment, Velocity, parse_payload,
)


# ArduCopter custom modes as sent by the telemetry bridge.
FLIGHT_MODES: Dict[int, str] = {
    0: "STABILIZE", 1: "ACRO", 2: "ALT_HOLD", 3: "AUTO",
    4: "GUIDED", 5: "LOITER", 6: "RTL", 7: "CIRCLE",
    8: "LAND", 9: "OF_LOITER", 10: "TAKEOFF",
}

# No GPS fragment kind exists yet, so lat/lon always come from here.
DEFAULT_HOME: Tuple[float, float] = (37.7749, -122.4194)
DEFAULT_DRONE_ID = "drone-1"

EMPTY_VOLTAGE = 12.0
FULL_VOLTAGE = 16.2


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def flight_mode_name(mode: Optional[int]) -> str:
    """Map a numeric mode to its name; unknown codes become ``MODE_<n>``."""
    code = 0 if mode is None else mode
    return FLIGHT_MODES.get(code, f"MODE_{code}")


def battery_percent(reading: Optional[BatteryReading]) -> float:
    """Battery level from `remaining`, else estimated from pack voltage, else 100."""
    if reading is None:
        return 100.0
    # MAVLink reports -1 when the autopilot cannot estimate remaining charge.
    if reading.remaining is not None and reading.remaining >= 0:
        return _clamp(reading.remaining)
    if reading.voltage is not None:
        return _clamp((reading.voltage - EMPTY_VOLTAGE) / (FULL_VOLTAGE - EMPTY_VOLTAGE) * 100.0)
    # Unknown remaining and no voltage: report full rather than empty.
    return 100.0


def altitude_meters(reading: Optional[AltitudeReading]) -> float:
    if reading is None:
        return 0.0
    if reading.relative is not None:
        return reading.relative
    if reading.amsl is not None:
        return reading.amsl
    return 0.0


def latest_by_kind(fragments: Iterable[TelemetryFragment]) -> Dict[str, TelemetryFragment]:
    """Newest fragment per kind. On equal timestamps the earlier element wins."""
    latest: Dict[str, TelemetryFragment] = {}
    for fragment in fragments:
        current = latest.get(fragment.kind)
        if current is None or fragment.timestamp > current.timestamp:
            latest[fragment.kind] = fragment
    return latest


def _drone_id(fragments: Sequence[TelemetryFragment]) -> str:
    with_sysid = [f for f in fragments if f.sysid is not None]
    if not with_sysid:
        return DEFAULT_DRONE_ID
    newest = max(with_sysid, key=lambda f: f.timestamp)
    return f"drone-{newest.sysid}"


def _reading(latest: Dict[str, TelemetryFragment], kind: str):
    fragment = latest.get(kind)
    return parse_payload(fragment) if fragment is not None else None


def fuse(fragments: Sequence[TelemetryFragment],
         now: Optional[Callable[[], float]] = None) -> Telemetry:
    """Merge fragments into a single total `Telemetry` snapshot.

    Args:
        fragments: fragments from one fetch; duplicates of a kind are allowed.
        now: clock returning epoch seconds, consulted only for empty input.

    Returns:
        A snapshot whose timestamp is the newest fragment timestamp.
    """
    fragments = list(fragments)
    latest = latest_by_kind(fragments)

    battery: Optional[BatteryReading] = _reading(latest, "battery")
    altitude: Optional[AltitudeReading] = _reading(latest, "altitude")
    state: Optional[StateReading] = _reading(latest, "state")

    if fragments:
        timestamp = max(f.timestamp for f in fragments)
    else:
        timestamp = int((now or time.time)() * 1000)

    # ground_speed and distance_from_home stay None until GPS and velocity kinds exist.
    lat, lon = DEFAULT_HOME
    return Telemetry(
        drone_id=_drone_id(fragments),
        timestamp=timestamp,
        position=Position(lat=lat, lon=lon, alt=altitude_meters(altitude)),
        velocity=Velocity(vx=0.0, vy=0.0, vz=0.0),
        attitude=Attitude(roll=0.0, pitch=0.0, yaw=0.0),
        battery=battery_percent(battery),
        flight_mode=flight_mode_name(state.mode if state else None),
        armed=bool(state.armed) if state else False,
        has_state_data=state is not None,
    )
