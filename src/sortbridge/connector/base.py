import logging
from abc import abstractmethod

from sortbridge.support.events import EventSource
from sortbridge.support.mixins import StringerMixin

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """ Indicates an error condition with a connection. """


class ConnectionNotConnectedError(ConnectorError):
    """ Indicates a connection is in the disconnected state when a connection is required. """


class ConnectorEvent(StringerMixin):
    """ base class for connector events. """
    def __init__(self, connector):
        self.connector = connector


class ConnectorConnectedEvent(ConnectorEvent):
    """ The connector completed its handshake with the endpoint. """


class ConnectorDisconnectedEvent(ConnectorEvent):
    """ The connection failed or was closed. error is None for an orderly close by the peer. """
    def __init__(self, connector, error=None):
        super().__init__(connector)
        self.error = error


class ConnectorMessageEvent(ConnectorEvent):
    """ A message arrived from the endpoint. """
    def __init__(self, connector, message):
        super().__init__(connector)
        self.message = message


class TCPEndpoint:
    """
    Describes a remote endpoint as a host and port.
    """
    def __init__(self, host, port):
        self.host = host
        self.port = int(port)

    @classmethod
    def parse(cls, address):
        """
        >>> TCPEndpoint.parse('tcp://10.0.0.5:8080').key()
        '10.0.0.5:8080'
        >>> TCPEndpoint.parse('relay:9000').port
        9000
        """
        text = address.strip()
        if '://' in text:
            text = text.split('://', 1)[1]
        text = text.rstrip('/')
        host, sep, port = text.rpartition(':')
        if not sep or not host or not port.isdigit():
            raise ValueError("endpoint address must be host:port, got '%s'" % address)
        return cls(host, port)

    def key(self):
        return '%s:%d' % (self.host, self.port)

    def __str__(self):
        return self.key()


class Connector:
    """
    A single attempt to reach an endpoint.

    open() starts connecting without blocking the caller. The outcome is reported by firing
    ConnectorConnectedEvent, then any number of ConnectorMessageEvent, and finally one
    ConnectorDisconnectedEvent. Events may be fired from a background thread.
    """

    def __init__(self):
        self.events = EventSource()

    @property
    @abstractmethod
    def endpoint(self):
        """ the endpoint that this connector reaches out to """
        raise NotImplementedError

    @property
    @abstractmethod
    def connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def open(self):
        raise NotImplementedError

    @abstractmethod
    def send(self, message):
        """
        Writes a message to the endpoint.
        Raises ConnectorError if the message could not be written.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """ closes the connection immediately, without waiting for the peer. """
        raise NotImplementedError
