"""Operator alerts derived from the published telemetry and link state."""
import logging
import threading
from typing import Dict, List, Optional, Tuple

from dronedash.fusion import DEFAULT_DRONE_ID
from dronedash.schemas import Alert, Telemetry


class AlertMonitor:
    """Raise an alert once when a condition starts and resolve it once when it clears."""

    def __init__(self, low_battery: float = 20.0, critical_battery: float = 10.0,
                 max_altitude: float = 120.0):
        self.low_battery = low_battery
        self.critical_battery = critical_battery
        self.max_altitude = max_altitude
        self.active: Dict[str, Alert] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def _conditions(self, telemetry: Optional[Telemetry], connected: bool) -> Dict[str, Tuple[str, str]]:
        found: Dict[str, Tuple[str, str]] = {}
        if not connected:
            found["CONNECTION_LOST"] = ("CRITICAL", "Telemetry link lost")
        if telemetry is None:
            return found
        if telemetry.battery < self.low_battery:
            severity = "CRITICAL" if telemetry.battery < self.critical_battery else "WARNING"
            found["BATTERY_LOW"] = (severity, f"Battery level is low ({telemetry.battery:.0f}%)")
        if telemetry.position.alt > self.max_altitude:
            found["ALTITUDE_HIGH"] = ("WARNING", f"Altitude {telemetry.position.alt:.1f} m above {self.max_altitude:.0f} m ceiling")
        return found

    def evaluate(self, telemetry: Optional[Telemetry], connected: bool,
                 now_ms: int) -> Tuple[List[Alert], List[Alert]]:
        """Compare current conditions with active alerts.

        Returns:
            (triggered, resolved) alerts for this evaluation.
        """
        drone_id = telemetry.drone_id if telemetry else DEFAULT_DRONE_ID
        conditions = self._conditions(telemetry, connected)
        with self._lock:
            return self._apply(conditions, drone_id, now_ms)

    def _apply(self, conditions, drone_id, now_ms):
        triggered: List[Alert] = []
        resolved: List[Alert] = []

        for alert_type, (severity, message) in conditions.items():
            current = self.active.get(alert_type)
            if current is not None and current.severity == severity:
                continue
            # A severity change resolves the old alert and raises a new one.
            if current is not None:
                resolved.append(current.model_copy(update={"resolved": True, "resolved_at": now_ms}))
            alert = Alert(
                alert_id=f"alert-{alert_type.lower()}-{now_ms}",
                drone_id=drone_id,
                type=alert_type,
                severity=severity,
                timestamp=now_ms,
                message=message,
            )
            self.active[alert_type] = alert
            triggered.append(alert)
            self.logger.warning("Alert %s (%s): %s", alert_type, severity, message)

        for alert_type in [t for t in self.active if t not in conditions]:
            alert = self.active.pop(alert_type)
            resolved.append(alert.model_copy(update={"resolved": True, "resolved_at": now_ms}))
            self.logger.info("Alert %s resolved", alert_type)

        return triggered, resolved

    def snapshot(self) -> List[Alert]:
        with self._lock:
            return list(self.active.values())
