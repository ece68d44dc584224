import logging

from sortbridge.connector.base import ConnectorError, ConnectorConnectedEvent, ConnectorDisconnectedEvent, \
    ConnectorMessageEvent, TCPEndpoint
from sortbridge.heartbeat import LivenessProbe
from sortbridge.protocol.messages import MessageTypes
from sortbridge.support.events import EventSource
from sortbridge.support.mixins import ValueObject
from sortbridge.support.retry_strategy import BoundedRetryStrategy

logger = logging.getLogger(__name__)


class ConnectionState(object):
    """ The lifecycle states of an EndpointConnection """

    idle = 'idle'
    connecting = 'connecting'
    open = 'open'
    closing = 'closing'
    reconnecting = 'reconnecting'
    exhausted = 'exhausted'


class ConnectionStateEvent(ValueObject):
    """ Fired on every state transition of an endpoint connection. """
    def __init__(self, endpoint, state, previous, attempt):
        self.endpoint = endpoint
        self.state = state
        self.previous = previous
        self.attempt = attempt


class EndpointExhaustedEvent(ValueObject):
    """ Fired once when an endpoint gives up reconnecting. """
    def __init__(self, endpoint, attempts):
        self.endpoint = endpoint
        self.attempts = attempts


class MessageReceivedEvent(ValueObject):
    def __init__(self, endpoint, message):
        self.endpoint = endpoint
        self.message = message


class EndpointConnection:
    """
    Maintains the connection to one remote endpoint.

    The connection is opened with connect() and then kept open: when the transport fails, is closed by the
    peer, or stops answering liveness probes, a new attempt is made after a constant delay. Once the retry
    strategy's bound is reached the connection is exhausted and stays so until reset().

    All methods must be called on the loop's thread. Connector events arrive on background threads and are
    handed to the loop before they touch any state.

    :param endpoint: the TCPEndpoint to connect to
    :param loop: the EventLoop that dispatches events and timers
    :param connector_factory: callable creating a new Connector for the endpoint, once per attempt
    :param retry_strategy: a BoundedRetryStrategy giving the reconnect delay and attempt bound
    :param ping_interval: seconds between liveness probes while open
    :param network_timeout: seconds allowed for the handshake and between probe replies
    """

    def __init__(self, endpoint: TCPEndpoint, loop, connector_factory, retry_strategy: BoundedRetryStrategy,
                 ping_interval=20, network_timeout=30):
        self.endpoint = endpoint
        self.key = endpoint.key()
        self.loop = loop
        self.connector_factory = connector_factory
        self.retry_strategy = retry_strategy
        self.network_timeout = network_timeout
        self.events = EventSource()
        self.state = ConnectionState.idle
        self.last_liveness = None
        self.probe = LivenessProbe(loop, self.send, self._liveness_timeout, ping_interval, network_timeout,
                                   name=self.key)
        self._connector = None
        self._reconnect_timer = None
        self._handshake_timer = None

    @property
    def attempts(self):
        return self.retry_strategy.attempts

    @property
    def is_open(self):
        return self.state == ConnectionState.open

    def _transition(self, state):
        previous = self.state
        self.state = state
        logger.info("%s: %s -> %s (attempt %d/%d)" %
                    (self.key, previous, state, self.attempts, self.retry_strategy.max_attempts))
        self.events.fire(ConnectionStateEvent(self.key, state, previous, self.attempts))

    def connect(self):
        """
        Starts connecting. Does nothing unless the connection is idle.
        :return: True if a connection attempt was started
        """
        if self.state != ConnectionState.idle:
            return False
        self.retry_strategy.reset()
        self._start_attempt()
        return True

    def _start_attempt(self):
        self._transition(ConnectionState.connecting)
        connector = self._connector = self.connector_factory(self.endpoint)
        connector.events.add(self._post_connector_event)
        self._handshake_timer = self.loop.call_later(self.network_timeout, self._handshake_timeout, connector)
        try:
            connector.open()
        except (ConnectorError, OSError) as e:
            self._transport_failed(connector, e)

    def _post_connector_event(self, event):
        self.loop.call_soon_threadsafe(self._connector_event, event)

    def _connector_event(self, event):
        if event.connector is not self._connector:
            return      # from a superseded attempt
        if isinstance(event, ConnectorConnectedEvent):
            self._opened()
        elif isinstance(event, ConnectorMessageEvent):
            self._received(event.message)
        elif isinstance(event, ConnectorDisconnectedEvent):
            self._transport_failed(event.connector, event.error or "closed by peer")

    def _opened(self):
        if self.state != ConnectionState.connecting:
            return
        self._cancel_timer('_handshake_timer')
        self.retry_strategy.reset()
        self.last_liveness = self.loop.time()
        self._transition(ConnectionState.open)
        self.probe.start()

    def _received(self, message):
        if message.get('type') == MessageTypes.pong:
            self.probe.record_reply()
            self.last_liveness = self.probe.last_reply
            logger.debug("pong from %s" % self.key)
            return
        self.events.fire(MessageReceivedEvent(self.key, message))

    def _handshake_timeout(self, connector):
        self._handshake_timer = None
        self._transport_failed(connector, "no handshake within %ss" % self.network_timeout)

    def _liveness_timeout(self, reason):
        self._transport_failed(self._connector, reason)

    def _transport_failed(self, connector, reason):
        if connector is not self._connector or \
                self.state not in (ConnectionState.connecting, ConnectionState.open):
            return
        logger.warning("connection to %s failed: %s" % (self.key, reason))
        self.probe.stop()
        self._cancel_timer('_handshake_timer')
        self._release_connector()
        delay = self.retry_strategy()
        self._transition(ConnectionState.reconnecting)
        if delay is None:
            logger.error("giving up on %s after %d attempts" % (self.key, self.attempts))
            self._transition(ConnectionState.exhausted)
            self.events.fire(EndpointExhaustedEvent(self.key, self.attempts))
        else:
            logger.info("reconnecting to %s in %ss" % (self.key, delay))
            self._reconnect_timer = self.loop.call_later(delay, self._reconnect)

    def _reconnect(self):
        self._reconnect_timer = None
        if self.state == ConnectionState.reconnecting:
            self._start_attempt()

    def _release_connector(self):
        """ detaches and force-closes the current connector """
        connector = self._connector
        self._connector = None
        if connector is not None:
            connector.events.remove(self._post_connector_event)
            connector.close()

    def _cancel_timer(self, name):
        timer = getattr(self, name)
        setattr(self, name, None)
        if timer is not None:
            timer.cancel()

    def send(self, message) -> bool:
        """
        Sends a message if the connection is open.
        :return: True if the message was written to the transport. Delivery is not confirmed.
        """
        connector = self._connector
        if self.state != ConnectionState.open or connector is None:
            logger.debug("not sending %s to %s: %s" % (message.get('type'), self.key, self.state))
            return False
        try:
            connector.send(message)
            return True
        except ConnectorError as e:
            logger.warning("send of %s to %s failed: %s" % (message.get('type'), self.key, e))
            return False

    def disconnect(self):
        """
        Closes the connection and cancels its timers. No reconnection is attempted afterwards.
        Has no effect on an idle or exhausted connection.
        :return: True if the connection was closed
        """
        if self.state in (ConnectionState.idle, ConnectionState.exhausted, ConnectionState.closing):
            return False
        self._cancel_timer('_reconnect_timer')
        self._cancel_timer('_handshake_timer')
        self.probe.stop()
        self.retry_strategy.exhaust()
        self._release_connector()
        self._transition(ConnectionState.closing)
        self._transition(ConnectionState.idle)
        return True

    def reset(self):
        """
        Returns an exhausted connection to idle so that it can be connected again.
        :return: True if the connection was exhausted
        """
        if self.state != ConnectionState.exhausted:
            return False
        self.retry_strategy.reset()
        self._transition(ConnectionState.idle)
        return True

    def status(self):
        return {
            'endpoint': self.key,
            'state': self.state,
            'attempts': self.attempts,
            'maxAttempts': self.retry_strategy.max_attempts,
            'sinceLastPong': self.probe.since_last_reply() if self.is_open else None
        }
