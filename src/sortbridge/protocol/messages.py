"""
The message protocol exchanged between the relay and its endpoints.

Each message is a JSON object with a "type" and an optional "data" payload, framed as a single
UTF-8 line terminated by a newline.
"""
import json
import time
from datetime import datetime, timezone


class ProtocolError(ValueError):
    """ Raised when an inbound frame cannot be decoded as a message. """


class MessageTypes(object):
    """ The message type names on the wire """

    ping = 'ping'
    pong = 'pong'
    connected = 'connected'
    package_report = 'packageReport'
    package_status = 'packageStatus'
    device_heartbeat = 'deviceHeartbeat'
    request_initial_data = 'requestInitialData'
    initial_data = 'initialData'
    request_device_heartbeat = 'requestDeviceHeartbeat'
    system_message = 'systemMessage'


def iso_timestamp(now=None):
    """ the current wall-clock time as an ISO-8601 string in UTC """
    moment = datetime.fromtimestamp(now, timezone.utc) if now is not None else datetime.now(timezone.utc)
    return moment.isoformat()


def encode(message) -> bytes:
    """
    >>> encode({'type': 'ping'})
    b'{"type": "ping"}\\n'
    """
    return (json.dumps(message, separators=(', ', ': ')) + '\n').encode('utf-8')


def decode(line) -> dict:
    """
    Decodes one frame.

    >>> decode(b'{"type": "pong", "data": {}}')
    {'type': 'pong', 'data': {}}
    """
    if isinstance(line, bytes):
        try:
            line = line.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError("frame is not valid UTF-8") from e
    try:
        message = json.loads(line)
    except ValueError as e:
        raise ProtocolError("malformed frame %r" % line.strip()) from e
    if not isinstance(message, dict) or not isinstance(message.get('type'), str):
        raise ProtocolError("frame has no message type: %r" % line.strip())
    data = message.get('data')
    if data is not None and not isinstance(data, dict):
        raise ProtocolError("message data must be an object: %r" % line.strip())
    return message


def message(type, data=None):
    result = {'type': type}
    if data is not None:
        result['data'] = data
    return result


def ping(now=time.time):
    return {'type': MessageTypes.ping, 'timestamp': int(now() * 1000)}


def pong(received_timestamp=None, device_info=None):
    return message(MessageTypes.pong, {
        'timestamp': iso_timestamp(),
        'receivedTimestamp': received_timestamp,
        'deviceInfo': device_info
    })


def package_report(package_id, source_device_id, sort_code, timestamp=None):
    """ sort_code is the raw signal value; the actuator decision is made by the receiver. """
    return message(MessageTypes.package_report, {
        'packageId': package_id,
        'sourceDeviceId': source_device_id,
        'sortCode': sort_code,
        'timestamp': timestamp or iso_timestamp()
    })


def package_status(package_id, status, device_id=None, position=None, processing_time=0):
    return message(MessageTypes.package_status, {
        'packageId': package_id,
        'status': status,
        'currentDevice': device_id,
        'currentPosition': position,
        'timestamp': iso_timestamp(),
        'processingTime': processing_time
    })


def device_heartbeat(device_info, tcp_connected, uptime, subscriber_count):
    data = dict(device_info)
    data.update({
        'lastHeartbeat': iso_timestamp(),
        'uptime': uptime,
        'clientCount': subscriber_count,
        'tcpConnected': bool(tcp_connected),
        'status': 'ONLINE' if tcp_connected else 'OFFLINE'
    })
    return message(MessageTypes.device_heartbeat, data)


def request_initial_data(version):
    return message(MessageTypes.request_initial_data, {
        'timestamp': iso_timestamp(),
        'clientInfo': {'agent': 'sortbridge', 'version': version}
    })


def request_device_heartbeat():
    return message(MessageTypes.request_device_heartbeat, {'timestamp': iso_timestamp()})


def system_message(level, text):
    return message(MessageTypes.system_message, {
        'level': level,
        'message': text,
        'timestamp': iso_timestamp()
    })
