import logging

import sortbridge
from sortbridge.balancer import ActuatorLoadBalancer
from sortbridge.config.settings import Settings
from sortbridge.heartbeat import DeviceHeartbeatMonitor, ServiceTimeoutEvent, ServiceRecoveredEvent
from sortbridge.orchestrator import Orchestrator, ConnectivityChangedEvent, OrchestratorEndpointExhaustedEvent
from sortbridge.packages import PackageRegistry
from sortbridge.relay import Relay
from sortbridge.routing import PathResolver
from sortbridge.support.loop import EventLoop
from sortbridge.translator import SignalTranslator, SignalEvent

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL = 60 * 60


class BridgeService:
    """
    Wires the bridge together from its settings.

    Package reports from the endpoints are routed and balanced. Signals handed to signal() become
    packages, announced through the relay when one is running and to the endpoints otherwise.

    :param settings: the loaded Settings
    :param loop: the EventLoop to run on; a new one by default
    :param connector_factory: passed to the Orchestrator, for alternative transports
    :param rng: the random source for the load balancer
    """

    def __init__(self, settings: Settings, loop=None, connector_factory=None, rng=None):
        self.settings = settings
        self.loop = loop or EventLoop()
        heartbeat = settings.heartbeat
        self.heartbeat_monitor = DeviceHeartbeatMonitor(self.loop, heartbeat.timeout, heartbeat.check_interval)
        self.orchestrator = Orchestrator(settings.connection.addresses(), self.loop, settings.connection,
                                         self.heartbeat_monitor, connector_factory)
        self.relay = Relay(self.loop, settings.device, heartbeat, sortbridge.__version__) \
            if settings.relay.enabled else None
        self.registry = PackageRegistry(settings.signal.package_prefix)
        self.balancer = ActuatorLoadBalancer(settings.sorting, rng)
        broadcast = self.relay.broadcast if self.relay else self.orchestrator.broadcast
        self.translator = SignalTranslator(settings.signal.trigger, settings.device, self.registry, broadcast,
                                           PathResolver(settings.routing), self.balancer)
        self.translator.attach(self.orchestrator)
        self.orchestrator.events.add(self._connectivity_event)
        self.heartbeat_monitor.events.add(self._heartbeat_event)
        self._cleanup_timer = None

    def _connectivity_event(self, event):
        if isinstance(event, OrchestratorEndpointExhaustedEvent):
            logger.error("endpoint %s unreachable after %d attempts, bridge is %s" %
                         (event.endpoint, event.attempts, event.summary))
        elif isinstance(event, ConnectivityChangedEvent):
            logger.info("%s is %s, %d endpoints connected (%s)" %
                        (event.endpoint, event.state, event.connected_count, event.summary))

    def _heartbeat_event(self, event):
        if isinstance(event, ServiceTimeoutEvent):
            logger.warning("device %s silent for %ss (signal link was %s)" %
                           (event.device_id, event.timeout_duration, 'up' if event.last_tcp_status else 'down'))
        elif isinstance(event, ServiceRecoveredEvent):
            logger.info("device %s is back, %s" % (event.device_id, event.status))

    def start(self):
        """ starts the relay, if configured, and connects every endpoint. Runs on the loop thread. """
        if self.relay is not None:
            self.relay.start(self.settings.relay.host, self.settings.relay.port)
        self.orchestrator.connect_all()
        if self._cleanup_timer is None:
            self._cleanup_timer = self.loop.call_every(CLEANUP_INTERVAL, self.registry.cleanup)

    def signal(self, signal, value, timestamp=None):
        """ hands a signal from the signal link to the bridge. Safe to call from any thread. """
        self.loop.call_soon_threadsafe(self.translator.handle_signal, SignalEvent(signal, value, timestamp))

    def set_signal_link(self, connected):
        """ reports the state of the signal link. Safe to call from any thread. """
        if self.relay is not None:
            self.loop.call_soon_threadsafe(self.relay.set_tcp_connected, connected)

    def shutdown(self):
        """ closes every connection and cancels every timer, then stops the loop """
        logger.info("shutting down")
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None
        self.orchestrator.shutdown()
        if self.relay is not None:
            self.relay.stop()
        self.balancer.report()
        self.loop.stop()

    def run(self):
        """ runs the bridge on the calling thread until shutdown() """
        self.loop.call_soon(self.start)
        try:
            self.loop.run_forever()
        except KeyboardInterrupt:
            self.shutdown()
