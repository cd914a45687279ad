"""
Tests for alert raising and resolution.
"""
import threading

from dronedash.alerts import AlertMonitor
from dronedash.fusion import fuse
from dronedash.schemas import TelemetryFragment


def snapshot(remaining=80, alt=0.0):
    return fuse([
        TelemetryFragment(kind="battery", timestamp=1, payload={"remaining": remaining}),
        TelemetryFragment(kind="altitude", timestamp=1, payload={"relative": alt}),
    ])


def test_no_alerts_when_nominal():
    triggered, resolved = AlertMonitor().evaluate(snapshot(), True, 1000)
    assert triggered == [] and resolved == []


def test_battery_low_raised_once_then_resolved():
    monitor = AlertMonitor()

    triggered, _ = monitor.evaluate(snapshot(remaining=15), True, 1000)
    assert [(a.type, a.severity) for a in triggered] == [("BATTERY_LOW", "WARNING")]
    assert triggered[0].to_wire()["alertId"] == "alert-battery_low-1000"

    again, _ = monitor.evaluate(snapshot(remaining=14), True, 2000)
    assert again == []

    _, resolved = monitor.evaluate(snapshot(remaining=60), True, 3000)
    assert resolved[0].resolved is True
    assert resolved[0].resolved_at == 3000
    assert monitor.snapshot() == []


def test_battery_escalates_to_critical():
    monitor = AlertMonitor()
    monitor.evaluate(snapshot(remaining=15), True, 1000)

    triggered, resolved = monitor.evaluate(snapshot(remaining=5), True, 2000)

    assert triggered[0].severity == "CRITICAL"
    assert resolved[0].severity == "WARNING"


def test_altitude_ceiling():
    triggered, _ = AlertMonitor(max_altitude=100).evaluate(snapshot(alt=150), True, 1)
    assert triggered[0].type == "ALTITUDE_HIGH"


def test_connection_lost_without_telemetry():
    monitor = AlertMonitor()
    triggered, _ = monitor.evaluate(None, False, 1)
    assert triggered[0].type == "CONNECTION_LOST"
    assert triggered[0].drone_id == "drone-1"

    _, resolved = monitor.evaluate(None, True, 2)
    assert resolved[0].type == "CONNECTION_LOST"


def test_snapshot_is_safe_while_evaluating():
    monitor = AlertMonitor()
    low, nominal = snapshot(remaining=5, alt=150.0), snapshot()
    errors = []

    def poller():
        for i in range(500):
            monitor.evaluate(low if i % 2 else nominal, bool(i % 3), i)

    def reader():
        try:
            for _ in range(500):
                monitor.snapshot()
        except RuntimeError as e:
            errors.append(e)

    threads = [threading.Thread(target=poller), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
