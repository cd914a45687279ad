"""Socket.IO wiring for the dashboard backend.

Handlers stay small: validate -> dispatch -> ack. Telemetry, link status and
alerts are pushed to every client from controller listeners.
"""
import logging
import time

from dronedash.alerts import AlertMonitor
from dronedash.commands import CommandDispatcher
from dronedash.polling import ConnectionState, PollingController

logger = logging.getLogger(__name__)


def register_socketio_events(socketio, dispatcher: CommandDispatcher,
                             controller: PollingController, monitor: AlertMonitor):
    """Register handlers on the provided Socket.IO server instance.

    Handlers:
    - `connect`: send current link status, last snapshot and active alerts
    - `disconnect`: log client disconnects
    - `command`: validate and dispatch incoming commands
    """

    @socketio.on('connect')
    def handle_connect(auth=None):
        logger.info('Client connected')
        socketio.emit('conn_status', controller.status().to_wire())
        telemetry = controller.telemetry
        if telemetry is not None:
            socketio.emit('telemetry', telemetry.to_wire())
        for alert in monitor.snapshot():
            socketio.emit('alert_triggered', alert.to_wire())

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        logger.info('Client disconnected')

    @socketio.on('command')
    def handle_command(data):
        logger.info('Received command: %s', data)
        ack = dispatcher.dispatch(data if isinstance(data, dict) else {})
        socketio.emit('command_ack', ack.to_wire())
        logger.info('Sent command_ack: %s %s', ack.command, ack.status)
        return ack.to_wire()


def register_broadcasts(socketio, controller: PollingController, monitor: AlertMonitor,
                        clock=time.time):
    """Push published telemetry, link changes and alert transitions to clients."""

    def emit_alerts(telemetry, connected):
        triggered, resolved = monitor.evaluate(telemetry, connected, int(clock() * 1000))
        for alert in triggered:
            socketio.emit('alert_triggered', alert.to_wire())
        for alert in resolved:
            socketio.emit('alert_resolved', alert.to_wire())

    def on_telemetry(telemetry):
        socketio.emit('telemetry', telemetry.to_wire())
        emit_alerts(telemetry, controller.state != ConnectionState.DISCONNECTED)

    def on_status(status):
        socketio.emit('conn_status', status.to_wire())
        emit_alerts(controller.telemetry, status.status != ConnectionState.DISCONNECTED.value)

    controller.add_telemetry_listener(on_telemetry)
    controller.add_status_listener(on_status)
