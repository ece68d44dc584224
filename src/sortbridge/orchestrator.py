"""
Keeps a set of endpoint connections, one per configured remote, and presents them as one channel.

Outbound messages fan out to every open endpoint. Inbound messages are tagged with the endpoint they
came from before they reach subscribers, so the same message type arriving from two endpoints can be
told apart. Device heartbeats from any endpoint feed one DeviceHeartbeatMonitor.
"""
import logging

import sortbridge
from sortbridge.connector.base import ConnectionNotConnectedError, TCPEndpoint
from sortbridge.connector.socketconn import SocketConnector
from sortbridge.endpoint import EndpointConnection, ConnectionState, ConnectionStateEvent, \
    EndpointExhaustedEvent, MessageReceivedEvent
from sortbridge.heartbeat import DeviceHeartbeatMonitor
from sortbridge.protocol import messages
from sortbridge.protocol.messages import MessageTypes, ProtocolError
from sortbridge.support.events import EventSource
from sortbridge.support.mixins import ValueObject
from sortbridge.support.retry_strategy import BoundedRetryStrategy

logger = logging.getLogger(__name__)


class UnknownEndpointError(KeyError):
    """ The endpoint is not one of the orchestrator's configured endpoints. """


class ConnectivitySummary(object):
    disconnected = 'disconnected'
    connected = 'connected'
    partial = 'partial'


class InboundMessage(ValueObject):
    """ A message received from an endpoint, tagged with that endpoint. """
    def __init__(self, source, type, data):
        self.source = source
        self.type = type
        self.data = data


class ConnectivityChangedEvent(ValueObject):
    def __init__(self, endpoint, state, summary, connected_count):
        self.endpoint = endpoint
        self.state = state
        self.summary = summary
        self.connected_count = connected_count


class OrchestratorEndpointExhaustedEvent(ValueObject):
    """ An endpoint stopped reconnecting. It stays configured and can be retried with connect(). """
    def __init__(self, endpoint, attempts, summary):
        self.endpoint = endpoint
        self.attempts = attempts
        self.summary = summary


def socket_connector_factory(connect_timeout):
    def create(endpoint):
        return SocketConnector(endpoint, connect_timeout)
    return create


class Orchestrator:
    """
    Owns one EndpointConnection per configured address.

    :param addresses: the primary endpoint address followed by any additional backends, as host:port
    :param loop: the EventLoop shared by all connections
    :param settings: ConnectionSettings giving the reconnect and liveness parameters
    :param heartbeat_monitor: receives the device heartbeats relayed by the endpoints
    :param connector_factory: creates a Connector for an endpoint; defaults to TCP sockets
    """

    def __init__(self, addresses, loop, settings, heartbeat_monitor: DeviceHeartbeatMonitor=None,
                 connector_factory=None):
        self.loop = loop
        self.settings = settings
        self.heartbeat_monitor = heartbeat_monitor or DeviceHeartbeatMonitor(loop)
        self.events = EventSource()         # connectivity events
        self.messages = EventSource()       # every InboundMessage
        self._subscribers = {}              # message type -> EventSource
        factory = connector_factory or socket_connector_factory(settings.network_timeout)
        self._connections = {}
        for address in addresses:
            endpoint = TCPEndpoint.parse(address)
            if endpoint.key() in self._connections:
                logger.warning("ignoring duplicate endpoint %s" % endpoint)
                continue
            self._connections[endpoint.key()] = self._new_connection(endpoint, factory)

    def _new_connection(self, endpoint, connector_factory):
        settings = self.settings
        retry = BoundedRetryStrategy(settings.reconnect_interval, settings.max_reconnect_attempts)
        connection = EndpointConnection(endpoint, self.loop, connector_factory, retry,
                                        settings.ping_interval, settings.network_timeout)
        connection.events.add(self._connection_event)
        return connection

    @property
    def connections(self):
        """ a mapping from endpoint key to EndpointConnection """
        return dict(self._connections)

    def connection(self, endpoint_id) -> EndpointConnection:
        try:
            return self._connections[endpoint_id]
        except KeyError:
            raise UnknownEndpointError(endpoint_id) from None

    def connect_all(self):
        """ starts the heartbeat sweep and connects every idle endpoint. Safe to call repeatedly. """
        logger.info("connecting to %d endpoints" % len(self._connections))
        self.heartbeat_monitor.start()
        for connection in self._connections.values():
            connection.connect()

    def connect(self, endpoint_id):
        """ connects one endpoint, first resetting it if it had given up reconnecting. """
        connection = self.connection(endpoint_id)
        connection.reset()
        return connection.connect()

    def reconnect(self, endpoint_id):
        """ drops the current connection to an endpoint and starts again with a fresh attempt counter """
        connection = self.connection(endpoint_id)
        connection.disconnect()
        connection.reset()
        return connection.connect()

    def disconnect_all(self):
        for connection in self._connections.values():
            connection.disconnect()

    def shutdown(self):
        """ closes every connection and stops the heartbeat sweep. No timers remain afterwards. """
        logger.info("shutting down %d endpoints" % len(self._connections))
        self.heartbeat_monitor.stop()
        self.disconnect_all()

    def connected_count(self):
        return sum(1 for c in self._connections.values() if c.is_open)

    def summary(self):
        connected = self.connected_count()
        if connected == 0:
            return ConnectivitySummary.disconnected
        if connected == len(self._connections):
            return ConnectivitySummary.connected
        return ConnectivitySummary.partial

    def details(self):
        return {
            'summary': self.summary(),
            'total': len(self._connections),
            'connected': self.connected_count(),
            'details': {key: c.status() for key, c in self._connections.items()},
            'deviceHeartbeats': {key: r.as_dict() for key, r in self.heartbeat_monitor.records().items()}
        }

    def broadcast(self, message):
        """
        Sends the message to every open endpoint.
        :return: the number of endpoints the message was written to
        """
        count = sum(1 for c in self._connections.values() if c.is_open and c.send(message))
        if count == 0:
            logger.warning("no open endpoint for %s" % message.get('type'))
        return count

    def send_to(self, endpoint_id, message):
        """
        Sends the message to a single endpoint.
        :raises ConnectionNotConnectedError: the endpoint is not open or the write failed
        """
        connection = self.connection(endpoint_id)
        if not connection.is_open:
            raise ConnectionNotConnectedError("endpoint %s is %s" % (endpoint_id, connection.state))
        if not connection.send(message):
            raise ConnectionNotConnectedError("could not send %s to %s" % (message.get('type'), endpoint_id))

    def subscribe(self, message_type, handler):
        """ registers a handler for InboundMessages of one type. """
        self._subscribers.setdefault(message_type, EventSource()).add(handler)

    def unsubscribe(self, message_type, handler):
        source = self._subscribers.get(message_type)
        if source is not None:
            source.remove(handler)

    def request_initial_data(self):
        return self.broadcast(messages.request_initial_data(sortbridge.__version__))

    def request_device_heartbeat(self):
        return self.broadcast(messages.request_device_heartbeat())

    def report_package_status(self, package_id, status, device_id=None, position=None, processing_time=0):
        return self.broadcast(messages.package_status(package_id, status, device_id, position, processing_time))

    def _connection_event(self, event):
        if isinstance(event, MessageReceivedEvent):
            self._dispatch(event.endpoint, event.message)
        elif isinstance(event, EndpointExhaustedEvent):
            self.events.fire(OrchestratorEndpointExhaustedEvent(event.endpoint, event.attempts, self.summary()))
        elif isinstance(event, ConnectionStateEvent):
            if event.state == ConnectionState.open:
                self.connection(event.endpoint).send(messages.request_initial_data(sortbridge.__version__))
            self.events.fire(ConnectivityChangedEvent(event.endpoint, event.state, self.summary(),
                                                      self.connected_count()))

    def _dispatch(self, source, message):
        type = message.get('type')
        data = message.get('data')
        if data is None:
            data = {}
        try:
            self._track_heartbeat(type, data, source)
        except ProtocolError as e:
            logger.warning("dropped %s from %s: %s" % (type, source, e))
            return
        inbound = InboundMessage(source, type, data)
        self.messages.fire(inbound)
        subscribers = self._subscribers.get(type)
        if subscribers is not None:
            subscribers.fire(inbound)
        elif type not in (MessageTypes.device_heartbeat, MessageTypes.connected):
            logger.debug("no subscriber for %s from %s" % (type, source))

    def _track_heartbeat(self, type, data, source):
        if type == MessageTypes.device_heartbeat:
            self.heartbeat_monitor.record(data, source)
        elif type in (MessageTypes.connected, MessageTypes.initial_data) and data.get('deviceInfo'):
            self.heartbeat_monitor.record(data['deviceInfo'], source)
