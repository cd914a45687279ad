"""Command validation, safety checks and dispatch.

Commands are validated with the Pydantic schemas, gated on link state and on
the latest telemetry, then forwarded to the configured command sink (the
telemetry API or the simulator). The ACK flow is a stub: whatever the sink
answers is returned to the dashboard as-is.

Safety checks only trust `armed` when the snapshot says it was observed
(`has_state_data`); a defaulted value never blocks a command.

The dispatcher keeps a short history of client command IDs to reject
accidental double submission from the UI. Access to that structure is
synchronized with a Lock because Socket.IO handlers and Flask requests can run
on different threads.
"""
import logging
import threading
import uuid
from collections import deque
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from dronedash.fusion import DEFAULT_DRONE_ID
from dronedash.schemas import Command, CommandAck, TakeoffParams, Telemetry

FLIGHT_COMMANDS = ("TAKEOFF", "LAND", "RTL", "LOITER")


class CommandDispatcher:
    """Validate commands and forward accepted ones to a command sink."""

    def __init__(self, sink, controller, history_size: int = 1000):
        """Create dispatcher.

        Args:
            sink: object implementing ``send_command(drone_id, command, parameters) -> CommandAck``,
                or None when no write path is configured.
            controller: `PollingController` providing link state and telemetry.
            history_size: number of client command IDs to remember.
        """
        self.sink = sink
        self.controller = controller
        self.logger = logging.getLogger(__name__)
        self._processed_lock = threading.Lock()
        self._processed_set = set()
        self._processed_deque = deque(maxlen=history_size)

    def _reject(self, command_data: Any, reason: str, command: Optional[Command] = None) -> CommandAck:
        data = command_data if isinstance(command_data, dict) else {}
        telemetry = self.controller.telemetry
        return CommandAck(
            command_id=(command.command_id if command else None) or str(data.get("commandId") or uuid.uuid4()),
            drone_id=(command.drone_id if command else None) or (telemetry.drone_id if telemetry else DEFAULT_DRONE_ID),
            command=command.command if command else str(data.get("command", "UNKNOWN")),
            status="rejected",
            message=reason,
        )

    def prepare(self, command_data: dict) -> Tuple[Optional[CommandAck], Optional[Command]]:
        """Validate and authorize a command.

        Returns:
            (rejected_ack, None) or (None, command) with validated parameters.
        """
        try:
            command = Command.model_validate(command_data)
        except ValidationError as e:
            return self._reject(command_data, self._friendly_validation_error(e)), None

        if command.command_id:
            with self._processed_lock:
                if command.command_id in self._processed_set:
                    self.logger.warning("Duplicate command ID: %s", command.command_id)
                    return self._reject(command_data, "Duplicate command ID", command), None

        if not self.controller.is_connected:
            return self._reject(command_data, "Not connected to telemetry source", command), None

        if self.sink is None:
            return self._reject(command_data, "No command channel configured", command), None

        try:
            parameters = self._validate_params(command.command, command.parameters)
        except ValidationError as e:
            return self._reject(command_data, self._friendly_validation_error(e), command), None

        allowed, reason = self.command_allowed(command.command, parameters, self.controller.telemetry)
        if not allowed:
            return self._reject(command_data, reason, command), None

        if command.command_id:
            with self._processed_lock:
                self._processed_set.add(command.command_id)
                if len(self._processed_deque) == self._processed_deque.maxlen:
                    self._processed_set.discard(self._processed_deque[0])
                self._processed_deque.append(command.command_id)
        return None, command.model_copy(update={"parameters": parameters})

    def dispatch(self, command_data: dict) -> CommandAck:
        """Validate, check and send a command; always returns an acknowledgment."""
        rejected, command = self.prepare(command_data)
        if rejected:
            self.logger.info("Rejected %s: %s", rejected.command, rejected.message)
            return rejected

        telemetry = self.controller.telemetry
        drone_id = command.drone_id or (telemetry.drone_id if telemetry else DEFAULT_DRONE_ID)
        try:
            ack = self.sink.send_command(drone_id, command.command, command.parameters or None)
        except Exception as e:
            self.logger.error("Error sending command %s: %s", command.command, e)
            return self._reject(command_data, str(e), command)
        self.logger.info("Command %s -> %s", command.command, ack.status)
        return ack

    def _friendly_validation_error(self, e: ValidationError) -> str:
        err = e.errors()[0]
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "Invalid parameters")
        if loc == "command":
            return "Validation error: command must be one of ARM, DISARM, TAKEOFF, LAND, RTL, LOITER"
        if "alt" in loc and "greater than 0" in msg:
            return "Validation error: Altitude must be > 0 m"
        return f"Validation error: {msg}"

    def _validate_params(self, command: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        if command == "TAKEOFF":
            return TakeoffParams(**parameters).model_dump()
        return dict(parameters)

    def command_allowed(self, command: str, parameters: Dict[str, Any],
                        telemetry: Optional[Telemetry]) -> Tuple[bool, Optional[str]]:
        """Apply safety checks against observed vehicle state."""
        if telemetry is None or not telemetry.has_state_data:
            # `armed` is a default here, not an observation.
            return True, None

        if command == "ARM" and telemetry.armed:
            return False, "Already armed"

        if command == "DISARM":
            if not telemetry.armed:
                return False, "Already disarmed"
            if telemetry.position.alt > 0.5:
                return False, "Cannot disarm while airborne. Land first."

        if command in FLIGHT_COMMANDS and not telemetry.armed:
            return False, "Not armed"

        return True, None
