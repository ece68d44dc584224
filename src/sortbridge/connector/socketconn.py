import logging
import socket
import threading

from sortbridge.conduit.socket_conduit import message_conduit
from sortbridge.connector.base import Connector, ConnectorError, ConnectionNotConnectedError, \
    ConnectorConnectedEvent, ConnectorDisconnectedEvent, ConnectorMessageEvent, TCPEndpoint
from sortbridge.protocol.messages import ProtocolError
from sortbridge.support.loop import AsyncLoop

logger = logging.getLogger(__name__)


class SocketReaderLoop(AsyncLoop):
    """
    Connects the socket and then pumps frames from it until the stream ends or fails.
    """
    def __init__(self, connector):
        super().__init__(name='reader-%s' % connector.endpoint.key())
        self.connector = connector

    def startup(self):
        self.connector._connect()

    def loop(self):
        if not self.connector._read():
            self.stop_event.set()

    def exception_handler(self, e):
        self.stop_event.set()
        self.connector._finish(e)

    def shutdown(self):
        self.connector._finish(None)


class SocketConnector(Connector):
    """
    A connector that exchanges messages with a TCP endpoint.
    Connection and reads happen on a background thread; sends happen on the caller's thread.
    """
    def __init__(self, endpoint: TCPEndpoint, connect_timeout=5, socket_factory=socket.create_connection):
        """
        :param endpoint: the remote address
        :param connect_timeout: seconds to wait for the TCP handshake
        :param socket_factory: called with ((host, port), timeout) to create a connected socket
        """
        super().__init__()
        self._endpoint = endpoint
        self._connect_timeout = connect_timeout
        self._socket_factory = socket_factory
        self._conduit = None
        self._reader = None
        self._closed = False
        self._finished = False
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()

    @property
    def endpoint(self):
        return self._endpoint

    @property
    def connected(self):
        return self._conduit is not None and not self._closed

    def open(self):
        if self._reader is None and not self._closed:
            self._reader = SocketReaderLoop(self)
            self._reader.start()

    def _connect(self):
        endpoint = self._endpoint
        sock = self._socket_factory((endpoint.host, endpoint.port), self._connect_timeout)
        sock.settimeout(None)
        conduit = message_conduit(sock)
        with self._state_lock:
            closed = self._closed
            if not closed:
                self._conduit = conduit
        if closed:
            conduit.close()
            raise ConnectorError("connector to %s closed while connecting" % endpoint)
        logger.info("opened socket to %s" % endpoint)
        self.events.fire(ConnectorConnectedEvent(self))

    def _read(self):
        """
        :return: False when the peer closed the stream
        """
        try:
            message = self._conduit.read_message()
        except ProtocolError as e:
            logger.warning("dropped frame from %s: %s" % (self._endpoint, e))
            return True
        if message is None:
            return False
        self.events.fire(ConnectorMessageEvent(self, message))
        return True

    def _finish(self, error):
        """ reports the end of the connection, once. """
        with self._lock:
            if self._finished:
                return
            self._finished = True
        if error is not None and not self._closed:
            logger.warning("connection to %s failed: %s" % (self._endpoint, error))
        conduit = self._conduit
        if conduit is not None and not self._closed:
            conduit.close()
        self.events.fire(ConnectorDisconnectedEvent(self, error))

    def send(self, message):
        conduit = self._conduit
        if conduit is None or self._closed:
            raise ConnectionNotConnectedError("not connected to %s" % self._endpoint)
        try:
            with self._lock:
                conduit.write_message(message)
        except (OSError, ValueError) as e:
            raise ConnectorError("error writing to %s: %s" % (self._endpoint, e)) from e

    def close(self):
        with self._state_lock:
            self._closed = True
            conduit = self._conduit
        if conduit is not None:
            conduit.close()
        reader = self._reader
        if reader is not None:
            reader.stop(join=False)
