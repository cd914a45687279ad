"""
Main Flask server with Socket.IO for the drone telemetry dashboard.
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

from dronedash.alerts import AlertMonitor
from dronedash.commands import CommandDispatcher
from dronedash.config import Settings, build_command_sink, build_source, load_settings
from dronedash.events import register_broadcasts, register_socketio_events
from dronedash.polling import PollingController
from dronedash.sources.api_client import ApiClient, ApiError

logger = logging.getLogger(__name__)

settings = load_settings()

# Create Flask app
app = Flask(__name__)
app.config['SECRET_KEY'] = settings.secret_key
CORS(app)

# Create Socket.IO instance (threading mode used for simple local runs/tests).
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

# Runtime state, set by init_runtime()
controller: Optional[PollingController] = None
dispatcher: Optional[CommandDispatcher] = None
monitor: Optional[AlertMonitor] = None
history_client: Optional[ApiClient] = None


def init_runtime(source=None, cfg: Optional[Settings] = None, sink=None, api_client=None):
    """Wire source, controller, dispatcher and alert monitor.

    The polling loop is not started here; see `start_server`.
    """
    global controller, dispatcher, monitor, history_client

    cfg = cfg or settings
    if controller is not None:
        controller.stop()

    source = source or build_source(cfg)
    controller = PollingController(
        source,
        interval=cfg.poll_interval_ms / 1000.0,
        stale_after=cfg.stale_after_ms / 1000.0,
    )
    dispatcher = CommandDispatcher(sink if sink is not None else build_command_sink(cfg, source), controller)
    monitor = AlertMonitor()
    if api_client is not None:
        history_client = api_client
    elif cfg.telemetry_source != "SIM":
        history_client = getattr(source, "client", None) or ApiClient(cfg.api_endpoint, cfg.telemetry_api_url)
    else:
        history_client = None

    register_socketio_events(socketio, dispatcher, controller, monitor)
    register_broadcasts(socketio, controller, monitor)
    return controller


def _not_ready():
    return jsonify({'error': 'Runtime not initialised'}), 503


@app.route('/health', methods=['GET'])
def health():
    """Health check endpoint."""
    return jsonify({
        'status': 'ok',
        'source': controller.source.name if controller else None,
        'link': controller.state.value if controller else 'idle',
    })


@app.route('/api/v1/status', methods=['GET'])
def status():
    if controller is None:
        return _not_ready()
    return jsonify(controller.status().to_wire())


@app.route('/api/v1/telemetry', methods=['GET'])
def telemetry():
    """Last published snapshot plus link status; the snapshot is null before first data."""
    if controller is None:
        return _not_ready()
    snapshot = controller.telemetry
    return jsonify({
        'telemetry': snapshot.to_wire() if snapshot else None,
        'status': controller.status().to_wire(),
    })


@app.route('/api/v1/telemetry/history', methods=['GET'])
def telemetry_history():
    if history_client is None:
        return jsonify({'error': 'History is not available for this source'}), 404
    drone_id = request.args.get('droneId')
    if not drone_id:
        return jsonify({'error': 'droneId is required'}), 400
    try:
        items = history_client.get_telemetry_history(
            drone_id,
            start_time=request.args.get('startTime', type=int),
            end_time=request.args.get('endTime', type=int),
        )
    except ApiError as e:
        logger.error('Error fetching telemetry history: %s', e)
        return jsonify({'error': str(e)}), 502
    return jsonify(items)


@app.route('/api/v1/command', methods=['POST'])
def command():
    if dispatcher is None:
        return _not_ready()
    ack = dispatcher.dispatch(request.get_json(silent=True) or {})
    socketio.emit('command_ack', ack.to_wire())
    code = 400 if ack.status == 'rejected' else 200
    return jsonify(ack.to_wire()), code


@app.route('/api/v1/alerts', methods=['GET'])
def alerts():
    if monitor is None:
        return _not_ready()
    return jsonify([alert.to_wire() for alert in monitor.snapshot()])


def start_server():
    """Start the polling loop and the Socket.IO server."""
    init_runtime()
    controller.start()

    logger.info("Starting server on port %d at %s", settings.port, datetime.now(timezone.utc).isoformat())
    try:
        socketio.run(app, host='0.0.0.0', port=settings.port, debug=False, allow_unsafe_werkzeug=True)
    finally:
        # Ensure the polling thread stops on exit
        controller.stop()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        start_server()
    except KeyboardInterrupt:
        logger.info("Shutting down server...")
        if controller is not None:
            controller.stop()
        sys.exit(0)


if __name__ == '__main__':
    main()
