"""Pydantic models for telemetry fragments, fused snapshots and commands.

These models define the wire format used between the dashboard and this
backend, and the shape of the raw records read from the telemetry store.
Wire names are camelCase (``droneId``, ``hasStateData``); Python code uses the
snake_case field names and both are accepted on input.
"""
import math
from decimal import Decimal
from typing import Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


CommandName = Literal["ARM", "DISARM", "TAKEOFF", "LAND", "RTL", "LOITER"]
COMMAND_NAMES = ("ARM", "DISARM", "TAKEOFF", "LAND", "RTL", "LOITER")

KNOWN_KINDS = ("battery", "altitude", "state")


def lenient_float(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings to float, anything else to None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
    try:
        result = float(value)
    except (TypeError, ValueError, ArithmeticError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def lenient_int(value: Any) -> Optional[int]:
    number = lenient_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def lenient_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    return None


def lenient_timestamp(value: Any) -> Optional[int]:
    """Epoch milliseconds truncated to int; fractional values are kept, not dropped."""
    number = lenient_float(value)
    return None if number is None else int(number)


def effective_timestamp(record: Mapping[str, Any]) -> int:
    """Producer timestamp of a raw record: ``data.timestamp``, then ``timestamp``, then 0."""
    data = record.get("data")
    inner = data.get("timestamp") if isinstance(data, Mapping) else None
    value = inner or record.get("timestamp") or 0
    return lenient_timestamp(value) or 0


class WireModel(BaseModel):
    """Base for models that travel as camelCase JSON."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class TelemetryFragment(BaseModel):
    """One raw, typed, timestamped piece of telemetry as stored upstream."""
    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., description="Message kind: battery, altitude, state or other")
    timestamp: int = Field(0, description="Producer timestamp in epoch milliseconds")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Kind-specific fields")
    sysid: Optional[int] = Field(None, description="MAVLink system id of the producer")
    compid: Optional[int] = Field(None, description="MAVLink component id of the producer")

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TelemetryFragment":
        """Build a fragment from a store item shaped ``{timestamp, sysid?, compid?, data: {type, timestamp, ...}}``."""
        data = record.get("data")
        if not isinstance(data, Mapping):
            data = record
        kind = data.get("type") or "unknown"
        payload = {k: v for k, v in data.items() if k not in ("type", "timestamp")}
        return cls(
            kind=str(kind),
            timestamp=effective_timestamp(record),
            payload=payload,
            sysid=lenient_int(record.get("sysid")),
            compid=lenient_int(record.get("compid")),
        )


class BatteryReading(BaseModel):
    """Payload of a ``battery`` fragment."""
    model_config = ConfigDict(extra="ignore")

    remaining: Optional[float] = Field(None, description="Remaining charge in percent; negative means unknown")
    voltage: Optional[float] = Field(None, description="Pack voltage in volts")
    current: Optional[float] = Field(None, description="Current draw in amps")

    @field_validator("remaining", "voltage", "current", mode="before")
    @classmethod
    def _number(cls, v):
        return lenient_float(v)


class AltitudeReading(BaseModel):
    """Payload of an ``altitude`` fragment; values may arrive as strings."""
    model_config = ConfigDict(extra="ignore")

    relative: Optional[float] = Field(None, description="Altitude above home in meters")
    amsl: Optional[float] = Field(None, description="Altitude above mean sea level in meters")

    @field_validator("relative", "amsl", mode="before")
    @classmethod
    def _number(cls, v):
        return lenient_float(v)


class StateReading(BaseModel):
    """Payload of a ``state`` fragment."""
    model_config = ConfigDict(extra="ignore")

    armed: Optional[bool] = Field(None, description="Arming state reported by the autopilot")
    mode: Optional[int] = Field(None, description="ArduCopter custom mode number")

    @field_validator("armed", mode="before")
    @classmethod
    def _flag(cls, v):
        return lenient_bool(v)

    @field_validator("mode", mode="before")
    @classmethod
    def _mode(cls, v):
        return lenient_int(v)


Reading = Union[BatteryReading, AltitudeReading, StateReading]

_READINGS = {
    "battery": BatteryReading,
    "altitude": AltitudeReading,
    "state": StateReading,
}


def parse_payload(fragment: TelemetryFragment) -> Optional[Reading]:
    """Return the typed reading for a known kind, or None for unknown kinds."""
    model = _READINGS.get(fragment.kind)
    if model is None:
        return None
    return model.model_validate(fragment.payload)


class Position(BaseModel):
    """Position data."""
    lat: float = Field(..., description="Latitude in degrees")
    lon: float = Field(..., description="Longitude in degrees")
    alt: float = Field(..., description="Altitude in meters")


class Velocity(BaseModel):
    """Velocity data."""
    vx: float = Field(0.0, description="X velocity in m/s")
    vy: float = Field(0.0, description="Y velocity in m/s")
    vz: float = Field(0.0, description="Z velocity in m/s")


class Attitude(BaseModel):
    """Attitude data."""
    roll: float = Field(0.0, description="Roll in degrees")
    pitch: float = Field(0.0, description="Pitch in degrees")
    yaw: float = Field(0.0, description="Yaw/heading in degrees")


class Telemetry(WireModel):
    """Fused telemetry snapshot published to the dashboard."""
    drone_id: str = Field(..., alias="droneId")
    timestamp: int = Field(..., description="Newest contributing producer timestamp, epoch ms")
    position: Position
    velocity: Velocity = Field(default_factory=Velocity)
    attitude: Attitude = Field(default_factory=Attitude)
    battery: float = Field(..., ge=0, le=100, description="Battery level percentage")
    flight_mode: str = Field(..., alias="flightMode")
    armed: bool = Field(..., description="Armed status")
    has_state_data: bool = Field(
        False,
        alias="hasStateData",
        description="True only when `armed` was observed in a state message rather than defaulted",
    )
    ground_speed: Optional[float] = Field(None, alias="groundSpeed", description="Horizontal speed in m/s")
    distance_from_home: Optional[float] = Field(None, alias="distanceFromHome", description="Meters from home")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _truncate(cls, v):
        number = lenient_timestamp(v)
        return v if number is None else number

    def age_ms(self, now_ms: int) -> int:
        """Staleness of this snapshot relative to `now_ms`."""
        return max(0, now_ms - self.timestamp)


class TakeoffParams(BaseModel):
    """Parameters for takeoff command."""
    alt: float = Field(10.0, gt=0, description="Target altitude in meters")


class Command(WireModel):
    """Command from the dashboard."""
    command_id: Optional[str] = Field(None, alias="commandId", description="Optional client id for idempotency")
    drone_id: Optional[str] = Field(None, alias="droneId")
    command: CommandName
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Command parameters")

    @field_validator("command", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("parameters", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return {} if v is None else v


class CommandAck(WireModel):
    """Command acknowledgment returned to the dashboard."""
    command_id: str = Field(..., alias="commandId")
    drone_id: str = Field(..., alias="droneId")
    command: str
    status: Literal["accepted", "rejected", "executed"]
    message: str = ""


class ConnectionStatus(WireModel):
    """Connectivity of the polling loop."""
    status: Literal["idle", "polling", "connected", "disconnected"]
    source: Literal["SIM", "DYNAMODB", "API"]
    server_time: str = Field(..., alias="serverTime", description="ISO8601 timestamp")
    error: Optional[str] = None
    last_update: Optional[int] = Field(None, alias="lastUpdate", description="Timestamp of the current snapshot")
    stale: bool = False


class Alert(WireModel):
    """Operator alert derived from telemetry and connectivity."""
    alert_id: str = Field(..., alias="alertId")
    drone_id: str = Field(..., alias="droneId")
    type: Literal["BATTERY_LOW", "GEOFENCE_BREACH", "CONNECTION_LOST", "ALTITUDE_HIGH"]
    severity: Literal["INFO", "WARNING", "CRITICAL"]
    timestamp: int
    message: str
    resolved: bool = False
    resolved_at: Optional[int] = Field(None, alias="resolvedAt")
