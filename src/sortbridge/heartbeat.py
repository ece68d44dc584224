"""
Liveness tracking on two independent tracks.

Transport liveness: a LivenessProbe sends an application-level ping on a fixed interval while a
connection is open and expects pong replies. When no reply arrives within the network timeout the
owning connection is told to treat the socket as failed.

Device liveness: the DeviceHeartbeatMonitor keeps a record per device from the deviceHeartbeat
messages relayed by the endpoints, and sweeps them on a fixed interval. A relay can keep its socket
open yet stop forwarding, so a stale record is reported even while the transport looks healthy.
"""
import logging

from sortbridge.protocol import messages
from sortbridge.protocol.messages import ProtocolError
from sortbridge.support.events import EventSource
from sortbridge.support.mixins import ValueObject, StringerMixin

logger = logging.getLogger(__name__)


class LivenessProbe:
    """
    Periodically probes one connection while it is open.

    :param loop: the EventLoop that runs the probe timer
    :param send_probe: callable taking the ping message, returning True if it was sent
    :param on_timeout: callable invoked with a reason when the connection should be considered failed
    :param ping_interval: seconds between probes
    :param network_timeout: seconds without a reply after which the connection is failed
    """
    def __init__(self, loop, send_probe, on_timeout, ping_interval, network_timeout, name=None):
        self.loop = loop
        self.send_probe = send_probe
        self.on_timeout = on_timeout
        self.ping_interval = ping_interval
        self.network_timeout = network_timeout
        self.name = name
        self.last_reply = None
        self._task = None

    def start(self):
        """ (re)starts probing. The start counts as a reply so the timeout runs from now. """
        self.stop()
        self.last_reply = self.loop.time()
        self._task = self.loop.call_every(self.ping_interval, self._probe)

    def stop(self):
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()

    @property
    def running(self):
        return self._task is not None

    def record_reply(self):
        self.last_reply = self.loop.time()

    def since_last_reply(self):
        return None if self.last_reply is None else self.loop.time() - self.last_reply

    def stale(self):
        elapsed = self.since_last_reply()
        return elapsed is not None and elapsed > self.network_timeout

    def _probe(self):
        if not self.send_probe(messages.ping()):
            self._expire("liveness probe could not be sent")
        elif self.stale():
            self._expire("no pong for %.1fs (timeout %.1fs)" % (self.since_last_reply(), self.network_timeout))

    def _expire(self, reason):
        logger.warning("liveness timeout on %s: %s" % (self.name, reason))
        self.stop()
        self.on_timeout(reason)


class HeartbeatStatus(object):
    normal = 'NORMAL'
    timeout = 'TIMEOUT'


class DeviceHeartbeatRecord(StringerMixin):
    """ The last known liveness of one device, as reported by its relay. """

    def __init__(self, device_id):
        self.device_id = device_id
        self.device_name = device_id
        self.last_heartbeat = None
        self.last_seen = None
        self.tcp_connected = False
        self.heartbeat_status = HeartbeatStatus.normal
        self.timeout_time = None
        self.source = None
        self.uptime = None
        self.area = None

    @property
    def status(self):
        """ derived from the relay's view of its device link, not from receiving the heartbeat """
        return 'ONLINE' if self.tcp_connected else 'OFFLINE'

    def as_dict(self):
        return {
            'deviceId': self.device_id,
            'deviceName': self.device_name,
            'lastHeartbeat': self.last_heartbeat,
            'status': self.status,
            'tcpConnected': self.tcp_connected,
            'heartbeatStatus': self.heartbeat_status,
            'timeoutTime': self.timeout_time,
            'source': self.source,
            'uptime': self.uptime,
            'area': self.area
        }


class DeviceHeartbeatEvent(ValueObject):
    def __init__(self, device_id, status, last_heartbeat, source):
        self.device_id = device_id
        self.status = status
        self.last_heartbeat = last_heartbeat
        self.source = source


class ServiceTimeoutEvent(ValueObject):
    """ The relay for a device stopped sending heartbeats. last_tcp_status is the last state it reported. """
    reason = 'backend_service_timeout'

    def __init__(self, device_id, device_name, status, last_heartbeat, timeout_duration, last_tcp_status):
        self.device_id = device_id
        self.device_name = device_name
        self.status = status
        self.last_heartbeat = last_heartbeat
        self.timeout_duration = timeout_duration
        self.last_tcp_status = last_tcp_status


class ServiceRecoveredEvent(ValueObject):
    reason = 'backend_service_recovered'

    def __init__(self, device_id, device_name, status):
        self.device_id = device_id
        self.device_name = device_name
        self.status = status


class HeartbeatTimeoutBatchEvent(ValueObject):
    """ All devices that timed out during one sweep. """
    def __init__(self, timeouts):
        self.timeouts = timeouts


class DeviceHeartbeatMonitor:
    """
    Tracks device heartbeats and reports records that go stale.

    Fires DeviceHeartbeatEvent on every heartbeat, ServiceTimeoutEvent once per device when its
    record goes stale, ServiceRecoveredEvent when a stale device heartbeats again, and a
    HeartbeatTimeoutBatchEvent for each sweep that found newly stale devices.
    """
    def __init__(self, loop, heartbeat_timeout=90, check_interval=15):
        self.loop = loop
        self.heartbeat_timeout = heartbeat_timeout
        self.check_interval = check_interval
        self.events = EventSource()
        self._records = {}
        self._task = None

    def start(self):
        if self._task is not None:
            return
        logger.info("device heartbeat sweep every %ss, timeout %ss" % (self.check_interval, self.heartbeat_timeout))
        self._task = self.loop.call_every(self.check_interval, self.sweep)

    def stop(self):
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            logger.info("device heartbeat sweep stopped")

    @property
    def running(self):
        return self._task is not None

    def record(self, data, source=None):
        """
        Records a deviceHeartbeat payload.
        :param data: the message data, which must carry a deviceId
        :param source: the endpoint that relayed the heartbeat
        :return: the updated record
        """
        device_id = data.get('deviceId') if isinstance(data, dict) else None
        if not device_id:
            raise ProtocolError("device heartbeat without deviceId: %r" % (data,))
        record = self._records.get(device_id)
        if record is None:
            record = self._records[device_id] = DeviceHeartbeatRecord(device_id)
        record.device_name = data.get('deviceName') or device_id
        record.last_heartbeat = data.get('lastHeartbeat')
        record.last_seen = self.loop.time()
        record.tcp_connected = bool(data.get('tcpConnected', False))
        record.source = source
        record.uptime = data.get('uptime')
        record.area = data.get('area')
        logger.debug("heartbeat from %s via %s, device %s" % (device_id, source, record.status))

        self.events.fire(DeviceHeartbeatEvent(device_id, record.status, record.last_heartbeat, source))
        if record.heartbeat_status == HeartbeatStatus.timeout:
            record.heartbeat_status = HeartbeatStatus.normal
            record.timeout_time = None
            logger.info("heartbeat from %s (%s) recovered" % (device_id, record.device_name))
            self.events.fire(ServiceRecoveredEvent(device_id, record.device_name, record.status))
        return record

    def sweep(self):
        """
        Marks records whose last heartbeat is older than the timeout.
        :return: the ServiceTimeoutEvents fired by this sweep
        """
        now = self.loop.time()
        timeouts = []
        for record in list(self._records.values()):
            elapsed = now - record.last_seen
            if elapsed <= self.heartbeat_timeout or record.heartbeat_status == HeartbeatStatus.timeout:
                continue
            record.heartbeat_status = HeartbeatStatus.timeout
            record.timeout_time = messages.iso_timestamp()
            logger.warning("relay for %s stopped heartbeating, last heartbeat %s, device last %s" %
                           (record.device_id, record.last_heartbeat, record.status))
            event = ServiceTimeoutEvent(record.device_id, record.device_name, record.status,
                                        record.last_heartbeat, elapsed, record.tcp_connected)
            timeouts.append(event)
            self.events.fire(event)
        if timeouts:
            self.events.fire(HeartbeatTimeoutBatchEvent(timeouts))
        return timeouts

    def status(self, device_id):
        return self._records.get(device_id)

    def records(self):
        return dict(self._records)
