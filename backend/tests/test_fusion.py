"""
Tests for fusing partial fragments into a telemetry snapshot.
"""
from decimal import Decimal

import pytest

from dronedash.fusion import DEFAULT_HOME, battery_percent, flight_mode_name, fuse, latest_by_kind
from dronedash.schemas import BatteryReading, TelemetryFragment


def frag(kind, ts, **payload):
    return TelemetryFragment(kind=kind, timestamp=ts, payload=payload)


def test_empty_input_is_total():
    """Empty input still yields every field, stamped with the clock."""
    telemetry = fuse([], now=lambda: 1700000000.5)

    assert telemetry.timestamp == 1700000000500
    assert telemetry.drone_id == "drone-1"
    assert (telemetry.position.lat, telemetry.position.lon) == DEFAULT_HOME
    assert telemetry.position.alt == 0.0
    assert telemetry.velocity.model_dump() == {"vx": 0.0, "vy": 0.0, "vz": 0.0}
    assert telemetry.attitude.model_dump() == {"roll": 0.0, "pitch": 0.0, "yaw": 0.0}
    assert telemetry.battery == 100.0
    assert telemetry.flight_mode == "STABILIZE"
    assert telemetry.armed is False
    assert telemetry.has_state_data is False


def test_wire_form_has_every_field():
    wire = fuse([frag("battery", 5, remaining=50)]).to_wire()
    for key in ("droneId", "timestamp", "position", "velocity", "attitude",
                "battery", "flightMode", "armed", "hasStateData"):
        assert key in wire
    assert wire["groundSpeed"] is None
    assert wire["distanceFromHome"] is None


def test_no_state_fragment_marks_armed_as_defaulted():
    telemetry = fuse([frag("battery", 1, remaining=80), frag("altitude", 2, relative=3)])
    assert telemetry.armed is False
    assert telemetry.has_state_data is False


def test_state_fragment_marks_armed_as_observed():
    telemetry = fuse([frag("state", 1, armed=True, mode=4)])
    assert telemetry.armed is True
    assert telemetry.has_state_data is True

    disarmed = fuse([frag("state", 1, armed=False)])
    assert disarmed.armed is False
    assert disarmed.has_state_data is True


@pytest.mark.parametrize("payload,expected", [
    ({"remaining": 42, "voltage": 12.1}, 42.0),
    ({"voltage": 16.2}, 100.0),
    ({"voltage": 12.0}, 0.0),
    ({"voltage": 14.1}, 50.0),
    ({"voltage": 17.5}, 100.0),
    ({"voltage": 10.0}, 0.0),
    ({}, 100.0),
    ({"remaining": -1, "voltage": 12.0}, 0.0),
    ({"remaining": -1}, 100.0),
    ({"remaining": 130}, 100.0),
])
def test_battery_derivation(payload, expected):
    telemetry = fuse([frag("battery", 1, **payload)])
    assert telemetry.battery == pytest.approx(expected)


def test_battery_without_fragment_defaults_to_full():
    assert battery_percent(None) == 100.0
    assert battery_percent(BatteryReading()) == 100.0


def test_mode_mapping():
    assert flight_mode_name(4) == "GUIDED"
    assert flight_mode_name(8) == "LAND"
    assert flight_mode_name(10) == "TAKEOFF"
    assert flight_mode_name(99) == "MODE_99"
    assert fuse([frag("state", 1, mode=99)]).flight_mode == "MODE_99"
    assert fuse([frag("state", 1, armed=True)]).flight_mode == "STABILIZE"


def test_most_recent_fragment_wins():
    fragments = [frag("battery", 200, remaining=30), frag("battery", 100, remaining=90)]
    assert fuse(fragments).battery == 30.0
    assert fuse(list(reversed(fragments))).battery == 30.0


def test_latest_by_kind_keeps_first_on_tie():
    first = frag("state", 5, armed=True)
    second = frag("state", 5, armed=False)
    assert latest_by_kind([first, second])["state"] is first


def test_relative_altitude_preferred_over_amsl():
    assert fuse([frag("altitude", 1, relative="12.5", amsl="112.5")]).position.alt == 12.5
    assert fuse([frag("altitude", 1, amsl=Decimal("101.25"))]).position.alt == 101.25
    assert fuse([frag("altitude", 1)]).position.alt == 0.0


def test_malformed_payload_degrades_field_by_field():
    """A broken field falls back to its default without touching the others."""
    fragments = [
        frag("battery", 1, remaining="n/a", voltage="16.2"),
        frag("altitude", 2, relative={"nested": True}, amsl="80"),
        frag("state", 3, armed=True, mode="fast"),
    ]
    telemetry = fuse(fragments)
    assert telemetry.battery == pytest.approx(100.0)
    assert telemetry.position.alt == 80.0
    assert telemetry.armed is True
    assert telemetry.flight_mode == "STABILIZE"


def test_unknown_kinds_are_ignored():
    telemetry = fuse([frag("gps_raw", 500, lat=1.0, lon=2.0), frag("battery", 100, remaining=70)])
    assert (telemetry.position.lat, telemetry.position.lon) == DEFAULT_HOME
    assert telemetry.battery == 70.0
    # Unknown kinds still count toward the newest timestamp.
    assert telemetry.timestamp == 500


def test_drone_id_from_sysid():
    fragments = [
        TelemetryFragment(kind="battery", timestamp=1, payload={}, sysid=3),
        TelemetryFragment(kind="state", timestamp=2, payload={}, sysid=7),
        TelemetryFragment(kind="altitude", timestamp=3, payload={}),
    ]
    assert fuse(fragments).drone_id == "drone-7"


def test_fragment_from_store_record():
    record = {
        "timestamp": Decimal("90"),
        "sysid": Decimal("2"),
        "compid": Decimal("1"),
        "data": {"type": "battery", "timestamp": Decimal("120"), "remaining": Decimal("55")},
    }
    fragment = TelemetryFragment.from_record(record)
    assert fragment.kind == "battery"
    assert fragment.timestamp == 120
    assert fragment.sysid == 2
    assert fragment.payload == {"remaining": Decimal("55")}

    bare = TelemetryFragment.from_record({"timestamp": 50, "data": {"type": "state"}})
    assert bare.timestamp == 50
    assert TelemetryFragment.from_record({"data": {}}).kind == "unknown"
    assert TelemetryFragment.from_record({"data": {}}).timestamp == 0


def test_end_to_end_scenario():
    fragments = [
        frag("battery", 100, remaining=60),
        frag("altitude", 105, relative="12.5"),
        frag("state", 110, armed=True, mode=5),
    ]
    telemetry = fuse(fragments)

    assert telemetry.battery == 60
    assert telemetry.position.alt == 12.5
    assert telemetry.armed is True
    assert telemetry.flight_mode == "LOITER"
    assert telemetry.timestamp == 110
    assert telemetry.has_state_data is True


def test_fuse_is_deterministic():
    fragments = [frag("battery", 1, voltage=15.0), frag("state", 2, armed=True, mode=3)]
    assert fuse(fragments) == fuse(fragments)
