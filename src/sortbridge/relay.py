"""
The relay side of the bridge: the server that endpoint connections subscribe to.

A relay sits next to a signal source. It welcomes each subscriber with the device it represents, answers
liveness probes, serves initial data on request, and periodically broadcasts a device heartbeat carrying the
status of the signal link.
"""
import logging
import socket
import time

from sortbridge.conduit.socket_conduit import message_conduit
from sortbridge.protocol import messages
from sortbridge.protocol.messages import MessageTypes, ProtocolError, iso_timestamp
from sortbridge.support.events import EventSource
from sortbridge.support.loop import AsyncLoop
from sortbridge.support.mixins import ValueObject

logger = logging.getLogger(__name__)


class SubscriberJoinedEvent(ValueObject):
    def __init__(self, subscriber, count):
        self.subscriber = subscriber
        self.count = count


class SubscriberLeftEvent(ValueObject):
    def __init__(self, subscriber, count):
        self.subscriber = subscriber
        self.count = count


class Subscriber:
    """ One connected subscriber, written to from the loop thread. """

    def __init__(self, conduit, name):
        self.conduit = conduit
        self.name = name
        self.reader = None

    def send(self, message):
        try:
            self.conduit.write_message(message)
            return True
        except (OSError, ValueError) as e:
            logger.warning("could not send %s to %s: %s" % (message.get('type'), self.name, e))
            return False

    def close(self):
        self.conduit.close()
        if self.reader is not None:
            self.reader.stop(join=False)

    def __str__(self):
        return self.name


class SubscriberReaderLoop(AsyncLoop):
    """ reads frames from one subscriber and hands them to the relay on its loop """

    def __init__(self, relay, subscriber):
        super().__init__(name='subscriber-%s' % subscriber.name)
        self.relay = relay
        self.subscriber = subscriber

    def loop(self):
        try:
            message = self.subscriber.conduit.read_message()
        except ProtocolError as e:
            logger.warning("dropped frame from %s: %s" % (self.subscriber, e))
            return
        if message is None:
            self.stop_event.set()
        else:
            self.relay.loop.call_soon_threadsafe(self.relay.handle_message, self.subscriber, message)

    def exception_handler(self, e):
        logger.debug("reading from %s ended: %s" % (self.subscriber, e))
        self.stop_event.set()

    def shutdown(self):
        self.relay.loop.call_soon_threadsafe(self.relay.detach, self.subscriber)


class AcceptLoop(AsyncLoop):
    """ accepts subscriber sockets until the listening socket is closed """

    def __init__(self, relay, server_socket):
        super().__init__(name='relay-accept')
        self.relay = relay
        self.server_socket = server_socket

    def loop(self):
        sock, address = self.server_socket.accept()
        self.relay.loop.call_soon_threadsafe(self.relay._accepted, sock, address)

    def exception_handler(self, e):
        if self.running():
            logger.info("relay stopped accepting: %s" % e)
        self.stop_event.set()


class Relay:
    """
    :param loop: the EventLoop on which subscriber messages and the heartbeat timer are handled
    :param device: DeviceSettings of the device this relay represents
    :param heartbeat: HeartbeatSettings controlling the device heartbeat broadcast
    :param version: reported to subscribers in the initial data
    """

    def __init__(self, loop, device, heartbeat, version='0', clock=time.time):
        self.loop = loop
        self.device = device
        self.heartbeat = heartbeat
        self.version = version
        self.clock = clock
        self.started = clock()
        self.events = EventSource()
        self.tcp_connected = False
        self.subscribers = []
        self._server_socket = None
        self._acceptor = None
        self._heartbeat_timer = None

    def device_info(self):
        info = self.device.device_info()
        info['tcpConnected'] = self.tcp_connected
        info['startTime'] = iso_timestamp(self.started)
        return info

    def uptime(self):
        return self.clock() - self.started

    def start(self, host, port):
        """
        Listens for subscribers and starts the heartbeat broadcast.
        :return: the (host, port) actually bound, useful when port is 0
        """
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind((host, port))
        server.listen(5)
        self._server_socket = server
        self._acceptor = AcceptLoop(self, server)
        self._acceptor.start()
        self.start_heartbeat()
        address = server.getsockname()
        logger.info("relay for %s listening on %s:%d" % (self.device.id, address[0], address[1]))
        return address

    def start_heartbeat(self):
        if not self.heartbeat.enabled:
            logger.info("device heartbeat disabled")
            return
        if self._heartbeat_timer is None:
            self._heartbeat_timer = self.loop.call_every(self.heartbeat.interval, self.broadcast_heartbeat)

    def stop(self):
        """ closes the listening socket and every subscriber, and cancels the heartbeat """
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None
        if self._acceptor is not None:
            self._acceptor.stop(join=False)
            self._acceptor = None
        if self._server_socket is not None:
            try:
                self._server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass    # not supported for listening sockets on every platform
            self._server_socket.close()
            self._server_socket = None
        for subscriber in list(self.subscribers):
            subscriber.close()
        self.subscribers = []
        logger.info("relay stopped")

    def _accepted(self, sock, address):
        subscriber = Subscriber(message_conduit(sock), '%s:%d' % address[:2])
        subscriber.reader = SubscriberReaderLoop(self, subscriber)
        self.attach(subscriber)
        subscriber.reader.start()

    def attach(self, subscriber):
        """ adds a subscriber and sends it the welcome message """
        self.subscribers.append(subscriber)
        logger.info("subscriber %s joined, %d connected" % (subscriber, len(self.subscribers)))
        subscriber.send(messages.message(MessageTypes.connected, {
            'message': 'connected to %s' % self.device.name,
            'timestamp': iso_timestamp(),
            'deviceInfo': self.device_info()
        }))
        self.events.fire(SubscriberJoinedEvent(subscriber, len(self.subscribers)))

    def detach(self, subscriber):
        if subscriber not in self.subscribers:
            return
        self.subscribers.remove(subscriber)
        subscriber.close()
        logger.info("subscriber %s left, %d connected" % (subscriber, len(self.subscribers)))
        self.events.fire(SubscriberLeftEvent(subscriber, len(self.subscribers)))

    def handle_message(self, subscriber, message):
        type = message.get('type')
        data = message.get('data') or {}
        if type == MessageTypes.ping:
            received = message.get('timestamp', data.get('timestamp'))
            subscriber.send(messages.pong(received, self.device_info()))
        elif type == MessageTypes.request_initial_data:
            subscriber.send(messages.message(MessageTypes.initial_data, {
                'devices': [],
                'packages': [],
                'systemInfo': {
                    'version': self.version,
                    'startTime': iso_timestamp(self.started),
                    'totalDevices': 1,
                    'activeDevices': 1 if self.tcp_connected else 0
                },
                'deviceInfo': self.device_info()
            }))
        elif type == MessageTypes.request_device_heartbeat:
            subscriber.send(self.heartbeat_message())
        else:
            logger.debug("ignoring %s from %s" % (type, subscriber))

    def heartbeat_message(self):
        return messages.device_heartbeat(self.device_info(), self.tcp_connected, self.uptime(),
                                         len(self.subscribers))

    def broadcast_heartbeat(self):
        """
        Broadcasts the device heartbeat, unless heartbeats are disabled or nobody would receive it.
        :return: the number of subscribers reached
        """
        if not self.heartbeat.enabled:
            return 0
        if self.heartbeat.only_when_subscribed and not self.subscribers:
            return 0
        count = self.broadcast(self.heartbeat_message())
        logger.debug("device heartbeat %s (signal link %s) to %d subscribers" %
                     (self.device.id, 'up' if self.tcp_connected else 'down', count))
        return count

    def set_tcp_connected(self, connected):
        """ records the state of the signal link, reported in every heartbeat """
        connected = bool(connected)
        if connected != self.tcp_connected:
            logger.info("signal link %s" % ('connected' if connected else 'disconnected'))
        self.tcp_connected = connected

    def broadcast(self, message):
        """ :return: the number of subscribers the message was written to """
        return sum(1 for subscriber in list(self.subscribers) if subscriber.send(message))

    def broadcast_system_message(self, level, text):
        return self.broadcast(messages.system_message(level, text))
