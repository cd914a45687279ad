"""
Tests for the simulated drone and its store-shaped records.
"""
import itertools

from dronedash.fusion import fuse
from dronedash.schemas import TelemetryFragment
from dronedash.simulator.drone_sim import DroneSim, SimulatedSource


def fused(sim, now_ms=1000):
    return fuse([TelemetryFragment.from_record(r) for r in sim.records(now_ms)])


def test_simulator_initial_telemetry():
    """Test that simulator records fuse into a valid snapshot."""
    telemetry = fused(DroneSim())

    assert telemetry.drone_id == "drone-1"
    assert telemetry.timestamp == 1000
    assert telemetry.position.alt == 0.0
    assert telemetry.armed is False
    assert telemetry.has_state_data is True
    assert telemetry.flight_mode == "STABILIZE"
    assert telemetry.battery == 100


def test_records_match_store_shape():
    records = DroneSim(sysid=3).records(now_ms=42)
    assert [r["data"]["type"] for r in records] == ["battery", "altitude", "state"]
    for record in records:
        assert record["sysid"] == 3
        assert record["timestamp"] == 42
        assert record["data"]["timestamp"] == 42
    assert isinstance(records[1]["data"]["relative"], str)


def test_takeoff_climbs_and_drains_battery():
    sim = DroneSim()
    assert sim.send_command(None, "ARM").status == "executed"
    ack = sim.send_command(None, "TAKEOFF", {"alt": 10})
    assert ack.status == "accepted"

    # 6 seconds at 2 m/s reaches 10 m
    for _ in range(60):
        sim.update(dt=0.1)

    telemetry = fused(sim)
    assert telemetry.armed is True
    assert telemetry.flight_mode == "GUIDED"
    assert telemetry.position.alt >= 9.5
    assert telemetry.battery < 100


def test_land_descends_and_disarms():
    sim = DroneSim()
    sim.armed = True
    sim.alt_rel = 4.0

    assert sim.send_command(None, "LAND").status == "accepted"
    assert fused(sim).flight_mode == "LAND"
    for _ in range(30):
        sim.update(dt=0.1)

    assert sim.alt_rel == 0.0
    assert sim.armed is False


def test_rtl_and_loiter_modes():
    sim = DroneSim()
    sim.armed = True
    sim.alt_rel = 8.0

    assert sim.send_command(None, "LOITER").status == "executed"
    sim.update(dt=1.0)
    assert sim.alt_rel == 8.0
    assert fused(sim).flight_mode == "LOITER"

    sim.send_command(None, "RTL")
    assert fused(sim).flight_mode == "RTL"


def test_commands_rejected_in_wrong_state():
    sim = DroneSim()
    assert sim.send_command(None, "TAKEOFF").status == "rejected"
    assert sim.send_command(None, "DISARM").message == "Already disarmed"

    sim.armed = True
    sim.alt_rel = 5.0
    assert sim.send_command(None, "DISARM").message == "Cannot disarm in air"
    assert sim.send_command(None, "ARM").message == "Already armed"


def test_voltage_tracks_remaining():
    sim = DroneSim()
    sim.battery_level = 50.0
    battery = sim.records(1)[0]["data"]
    assert battery["remaining"] == 50
    assert battery["voltage"] == 14.1


def test_source_fetch_and_offline():
    ticks = itertools.count()
    source = SimulatedSource(DroneSim(clock=lambda: float(next(ticks))))

    result = source.fetch()
    assert sorted(result.kinds) == ["altitude", "battery", "state"]

    source.set_offline()
    assert source.fetch().is_error

    source.set_offline(False)
    assert not source.fetch().is_error


def test_simulator_determinism():
    sim1, sim2 = DroneSim(), DroneSim()
    for sim in (sim1, sim2):
        sim.send_command(None, "ARM")
        sim.send_command(None, "TAKEOFF", {"alt": 10})
        for _ in range(10):
            sim.update(dt=0.1)

    assert sim1.records(5) == sim2.records(5)
