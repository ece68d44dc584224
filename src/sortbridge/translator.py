"""
Turns device signals into packages, and package reports into actuator decisions.

The two directions usually run in different processes: the process attached to the signal source creates
packages and broadcasts their reports, the process receiving those reports decides where each package is
diverted.
"""
import logging

from sortbridge.balancer import ActuatorLoadBalancer, SortDecision
from sortbridge.packages import PackageRegistry
from sortbridge.protocol import messages
from sortbridge.protocol.messages import MessageTypes, ProtocolError, iso_timestamp
from sortbridge.routing import PathResolver
from sortbridge.support.events import EventSource
from sortbridge.support.mixins import ValueObject

logger = logging.getLogger(__name__)


class SignalEvent(ValueObject):
    """ One discrete signal read from the physical signal link. """
    def __init__(self, signal, value, timestamp=None):
        self.signal = signal
        self.value = value
        self.timestamp = timestamp or iso_timestamp()

    def key(self):
        """ the form matched against the trigger, e.g. PKG:1 """
        return "%s:%s" % (self.signal, self.value)


class PackageCreatedEvent(ValueObject):
    """ A package report was routed and given a SortDecision. """
    def __init__(self, package_id, path_id, decision: SortDecision, report, source=None):
        self.package_id = package_id
        self.path_id = path_id
        self.decision = decision
        self.report = report
        self.source = source


class SignalTranslator:
    """
    :param trigger: the "signal:value" string that announces a new package
    :param device: DeviceSettings identifying the device the signals come from
    :param registry: issues the package ids
    :param broadcast: callable sending a message to every listener, returning the count reached
    :param resolver: PathResolver for inbound package reports
    :param balancer: ActuatorLoadBalancer for inbound package reports
    """

    def __init__(self, trigger, device, registry: PackageRegistry, broadcast,
                 resolver: PathResolver, balancer: ActuatorLoadBalancer):
        self.trigger = trigger
        self.device = device
        self.registry = registry
        self.broadcast = broadcast
        self.resolver = resolver
        self.balancer = balancer
        self.events = EventSource()

    def handle_signal(self, event: SignalEvent):
        """
        Creates and announces a package when the signal matches the trigger.
        :return: the PackageInfo created, or None for a signal that is not the trigger
        """
        if event.key() != self.trigger:
            logger.debug("ignoring signal %s, trigger is %s" % (event.key(), self.trigger))
            return None
        package = self.registry.create(event.signal, event.value, self.device)
        report = messages.package_report(package.package_id, self.device.id, event.value, event.timestamp)
        sent = self.broadcast(report)
        logger.info("reported package %s to %d listeners" % (package.package_id, sent))
        return package

    def handle_package_report(self, report):
        """
        Routes a reported package and selects its actuator.
        :param report: an InboundMessage of type packageReport, or the report payload itself
        :return: the PackageCreatedEvent fired
        :raises ProtocolError: the report has no package id
        """
        source = getattr(report, 'source', None)
        data = getattr(report, 'data', report)
        if not isinstance(data, dict) or not data.get('packageId'):
            raise ProtocolError("package report without packageId from %s" % source)
        path_id = self.resolver.resolve(data)
        decision = self.balancer.select(path_id)
        logger.info("package %s on %s: %s" % (data['packageId'], path_id,
                    "outlet %d" % decision.target_code if decision.diverted else "straight through"))
        event = PackageCreatedEvent(data['packageId'], path_id, decision, data, source)
        self.events.fire(event)
        return event

    def _inbound_report(self, inbound):
        try:
            self.handle_package_report(inbound)
        except ProtocolError as e:
            logger.warning("dropped package report: %s" % e)

    def attach(self, orchestrator):
        """ handles the package reports arriving at the orchestrator """
        orchestrator.subscribe(MessageTypes.package_report, self._inbound_report)

    def detach(self, orchestrator):
        orchestrator.unsubscribe(MessageTypes.package_report, self._inbound_report)
