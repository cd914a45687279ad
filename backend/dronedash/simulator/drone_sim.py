"""Small deterministic drone simulator used for local development and tests.

The simulator produces the same raw items the telemetry bridge writes to
DynamoDB (one battery, one altitude and one state item per update), so SIM
mode runs through exactly the same dedupe and fusion path as production.
It also accepts the dashboard commands and changes its state accordingly.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from dronedash.fusion import EMPTY_VOLTAGE, FLIGHT_MODES, FULL_VOLTAGE
from dronedash.schemas import CommandAck
from dronedash.sources.base import FetchResult
from dronedash.sources.dynamodb_source import select_latest

MODE_CODES = {name: code for code, name in FLIGHT_MODES.items()}


class DroneSim:
    """Lightweight deterministic vehicle model.

    Notes:
    - State variables are plain attributes so tests can set up scenarios
      directly (``sim.armed = True; sim.alt_rel = 5.0``).
    - Only altitude, battery and state are modelled; the bridge has no GPS
      message kind either.
    """

    def __init__(self, sysid: int = 1, clock: Callable[[], float] = time.time):
        self.sysid = sysid
        self.clock = clock

        # State
        self.armed = False
        self.mode = MODE_CODES["STABILIZE"]
        self.home_amsl = 100.0
        self.alt_rel = 0.0
        self.battery_level = 100.0

        self.target_alt: Optional[float] = None

        self.climb_rate = 2.0  # m/s
        self.battery_drain_rate = 0.1  # % per second when armed

        self.last_update = clock()

    @property
    def drone_id(self) -> str:
        return f"drone-{self.sysid}"

    @property
    def battery_voltage(self) -> float:
        return EMPTY_VOLTAGE + (FULL_VOLTAGE - EMPTY_VOLTAGE) * self.battery_level / 100.0

    def update(self, dt: Optional[float] = None) -> None:
        """Advance the simulation by `dt` seconds (wall-clock delta by default)."""
        if dt is None:
            now = self.clock()
            dt = now - self.last_update
            self.last_update = now

        if self.armed:
            self._update_altitude(dt)
            self.battery_level = max(0.0, self.battery_level - self.battery_drain_rate * dt)

    def _update_altitude(self, dt: float):
        if self.target_alt is None:
            return
        if abs(self.alt_rel - self.target_alt) > 0.05:
            direction = 1 if self.target_alt > self.alt_rel else -1
            self.alt_rel += direction * self.climb_rate * dt
            if (direction > 0 and self.alt_rel >= self.target_alt) or (direction < 0 and self.alt_rel <= self.target_alt):
                self.alt_rel = self.target_alt
        else:
            self.alt_rel = self.target_alt
        # Touchdown after LAND/RTL disarms, as ArduCopter does.
        if self.alt_rel <= 0.0 and self.mode in (MODE_CODES["LAND"], MODE_CODES["RTL"]):
            self.armed = False
            self.target_alt = None

    def records(self, now_ms: Optional[int] = None) -> List[Dict[str, Any]]:
        """Raw store items for the current state, all stamped `now_ms`."""
        ts = int(self.clock() * 1000) if now_ms is None else now_ms
        header = {"timestamp": ts, "sysid": self.sysid, "compid": 1}
        return [
            {**header, "data": {
                "type": "battery", "timestamp": ts,
                "voltage": round(self.battery_voltage, 2),
                "remaining": int(self.battery_level),
            }},
            # The bridge forwards altitudes as strings.
            {**header, "data": {
                "type": "altitude", "timestamp": ts,
                "relative": f"{self.alt_rel:.2f}",
                "amsl": f"{self.home_amsl + self.alt_rel:.2f}",
            }},
            {**header, "data": {
                "type": "state", "timestamp": ts,
                "armed": self.armed,
                "mode": self.mode,
            }},
        ]

    def _ack(self, command: str, status: str, message: str) -> CommandAck:
        return CommandAck(
            command_id=f"cmd-{uuid.uuid4()}",
            drone_id=self.drone_id,
            command=command,
            status=status,
            message=message,
        )

    def send_command(self, drone_id: Optional[str], command: str,
                     parameters: Optional[Dict[str, Any]] = None) -> CommandAck:
        """Execute a dashboard command against the simulated vehicle."""
        params = parameters or {}

        if command == "ARM":
            if self.armed:
                return self._ack(command, "rejected", "Already armed")
            self.armed = True
            return self._ack(command, "executed", "Command ARM executed")

        elif command == "DISARM":
            if not self.armed:
                return self._ack(command, "rejected", "Already disarmed")
            if self.alt_rel > 0.5:
                return self._ack(command, "rejected", "Cannot disarm in air")
            self.armed = False
            self.mode = MODE_CODES["STABILIZE"]
            return self._ack(command, "executed", "Command DISARM executed")

        elif command == "TAKEOFF":
            if not self.armed:
                return self._ack(command, "rejected", "Not armed")
            self.target_alt = float(params.get("alt", 10))
            self.mode = MODE_CODES["GUIDED"]
            return self._ack(command, "accepted", f"Taking off to {self.target_alt:.1f} m")

        elif command in ("LAND", "RTL"):
            if not self.armed:
                return self._ack(command, "rejected", "Not armed")
            # No position model: RTL is a descent at the current location.
            self.target_alt = 0.0
            self.mode = MODE_CODES[command]
            return self._ack(command, "accepted", f"Command {command} accepted")

        elif command == "LOITER":
            if not self.armed:
                return self._ack(command, "rejected", "Not armed")
            self.target_alt = self.alt_rel
            self.mode = MODE_CODES["LOITER"]
            return self._ack(command, "executed", "Holding position")

        return self._ack(command, "rejected", f"Unknown command: {command}")


class SimulatedSource:
    """Telemetry source and command sink backed by `DroneSim`."""

    name = "SIM"

    def __init__(self, sim: Optional[DroneSim] = None):
        self.sim = sim or DroneSim()
        self.offline = False
        self.logger = logging.getLogger(__name__)

    def set_offline(self, offline: bool = True):
        """Make subsequent fetches report a lost link."""
        self.offline = offline

    def fetch(self) -> FetchResult:
        if self.offline:
            return FetchResult.failed("Simulated link down")
        self.sim.update()
        return FetchResult(fragments=select_latest(self.sim.records()))

    def send_command(self, drone_id: Optional[str], command: str,
                     parameters: Optional[Dict[str, Any]] = None) -> CommandAck:
        ack = self.sim.send_command(drone_id, command, parameters)
        self.logger.info("Simulated %s -> %s", command, ack.status)
        return ack
