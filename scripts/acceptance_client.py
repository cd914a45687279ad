# Acceptance client driving the dashboard backend via Socket.IO (SIM mode)
import sys
import time

import socketio

BACKEND_URL = 'http://localhost:5000'

sio = socketio.Client()
telemetry = None
conn_status = None
acks = []


@sio.event
def connect():
    print('Connected')


@sio.on('telemetry')
def on_telem(data):
    global telemetry
    telemetry = data


@sio.on('conn_status')
def on_status(data):
    global conn_status
    conn_status = data


@sio.on('command_ack')
def on_ack(data):
    acks.append(data)


def wait_for(predicate, timeout=15.0, interval=0.1, desc='condition'):
    start = time.time()
    while time.time() - start < timeout:
        if predicate():
            return True
        time.sleep(interval)
    raise RuntimeError(f'Timeout waiting for {desc}')


def send_command(command, parameters=None):
    count = len(acks)
    sio.emit('command', {"command": command, "parameters": parameters or {}})
    wait_for(lambda: len(acks) > count, desc=f'{command} ack')
    ack = acks[-1]
    print(f"{command}: {ack['status']} ({ack['message']})")
    return ack


def main():
    sio.connect(BACKEND_URL)
    try:
        wait_for(lambda: telemetry is not None, desc='first telemetry')
        wait_for(lambda: conn_status and conn_status['status'] == 'connected', desc='connected status')
        assert telemetry['hasStateData'] is True, 'SIM source always sends state messages'

        if telemetry['armed']:
            assert send_command('ARM')['status'] == 'rejected'
        else:
            assert send_command('TAKEOFF', {'alt': 5})['status'] == 'rejected'
            assert send_command('ARM')['status'] == 'executed'
            wait_for(lambda: telemetry['armed'], desc='armed telemetry')

        assert send_command('TAKEOFF', {'alt': 5})['status'] == 'accepted'
        wait_for(lambda: telemetry['position']['alt'] >= 4.5, desc='takeoff altitude')
        assert telemetry['flightMode'] == 'GUIDED'

        assert send_command('LOITER')['status'] == 'executed'
        wait_for(lambda: telemetry['flightMode'] == 'LOITER', desc='loiter mode')

        assert send_command('DISARM')['status'] == 'rejected'

        assert send_command('LAND')['status'] == 'accepted'
        wait_for(lambda: not telemetry['armed'], desc='landed and disarmed')
        print('Acceptance run passed')
    finally:
        sio.disconnect()


if __name__ == '__main__':
    try:
        main()
    except (AssertionError, RuntimeError) as e:
        print(f'Acceptance run failed: {e}')
        sys.exit(1)
