"""
Typed views of the validated configuration.

Each settings class starts from the same defaults as the schema, so components can be built in code
and in tests without reading any files.
"""
import logging
import os

from sortbridge.balancer import BOTH_DIRECTIONS, LEFT, RIGHT
from sortbridge.config.config import ConfigurationError, apply_conf, fetch_conf_path, load_config
from sortbridge.support.mixins import ValueObject

logger = logging.getLogger(__name__)

config_name = 'sortbridge'
config_directory = os.path.dirname(__file__)


class ConnectionSettings(ValueObject):
    def __init__(self, url='127.0.0.1:8080', backend_servers=(), reconnect_interval=5.0,
                 max_reconnect_attempts=10, network_timeout=30.0, ping_interval=20.0):
        self.url = url
        self.backend_servers = list(backend_servers)
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_attempts = max_reconnect_attempts
        self.network_timeout = network_timeout
        self.ping_interval = ping_interval

    def addresses(self):
        """ the primary endpoint followed by the additional backends """
        return [self.url] + [s for s in self.backend_servers if s]


class HeartbeatSettings(ValueObject):
    def __init__(self, enabled=True, interval=30.0, timeout=90.0, check_interval=15.0, only_when_subscribed=True):
        self.enabled = enabled
        self.interval = interval
        self.timeout = timeout
        self.check_interval = check_interval
        self.only_when_subscribed = only_when_subscribed


class SortingSettings(ValueObject):
    """
    Diversion parameters, globally and per path.

    :param actuators: path id -> number of actuators on the path
    :param probabilities: path id -> divert probability, overriding the global probability
    :param directions: path id -> the directions actuators on the path may divert to
    """

    def __init__(self, enabled=True, probability=0.95, left_right_balance=0.5,
                 actuators=None, probabilities=None, directions=None):
        self.enabled = enabled
        self.default_probability = probability
        self.left_right_balance = left_right_balance
        self.actuators = dict(actuators or {})
        self.probabilities = dict(probabilities or {})
        self.allowed_directions = {path: tuple(d) for path, d in (directions or {}).items()}

    def actuator_count(self, path_id):
        return self.actuators.get(path_id, 0)

    def probability(self, path_id):
        override = self.probabilities.get(path_id)
        return self.default_probability if override is None else override

    def directions(self, path_id):
        return self.allowed_directions.get(path_id) or BOTH_DIRECTIONS


class RoutingSettings(ValueObject):
    def __init__(self, default_path='region_sort_line', devices=None, sort_codes=None, regions=None):
        self.default_path = default_path
        self.devices = dict(devices or {})
        self.sort_codes = dict(sort_codes or {})
        self.regions = dict(regions or {})


class SignalSettings(ValueObject):
    def __init__(self, trigger='PKG:1', package_prefix='PKG'):
        self.trigger = trigger
        self.package_prefix = package_prefix


class DeviceSettings(ValueObject):
    def __init__(self, id='SORT_BRIDGE_01', name='sortbridge', area=''):
        self.id = id
        self.name = name
        self.area = area

    def device_info(self):
        return {'deviceId': self.id, 'deviceName': self.name, 'area': self.area}


class RelaySettings(ValueObject):
    def __init__(self, enabled=False, host='0.0.0.0', port=8080):
        self.enabled = enabled
        self.host = host
        self.port = port


def _section(config, *path):
    return fetch_conf_path(config, path) or {}


def _directions(section):
    result = {}
    for path_id, values in section.items():
        directions = tuple(v.strip().lower() for v in values if v.strip())
        unknown = [d for d in directions if d not in (LEFT, RIGHT)]
        if unknown:
            raise ConfigurationError("sorting/directions/%s: unknown direction %s" % (path_id, ', '.join(unknown)))
        result[path_id] = directions
    return result


class Settings(ValueObject):
    def __init__(self, connection=None, heartbeat=None, sorting=None, routing=None, signal=None,
                 device=None, relay=None):
        self.connection = connection or ConnectionSettings()
        self.heartbeat = heartbeat or HeartbeatSettings()
        self.sorting = sorting or SortingSettings()
        self.routing = routing or RoutingSettings()
        self.signal = signal or SignalSettings()
        self.device = device or DeviceSettings()
        self.relay = relay or RelaySettings()

    @classmethod
    def from_config(cls, config):
        """ builds the settings from a validated ConfigObj """
        connection = ConnectionSettings()
        apply_conf(_section(config, 'connection'), connection)
        connection.backend_servers = list(connection.backend_servers)
        heartbeat = HeartbeatSettings()
        apply_conf(_section(config, 'heartbeat'), heartbeat)

        sorting_conf = _section(config, 'sorting')
        sorting = SortingSettings(
            sorting_conf.get('enabled', True),
            sorting_conf.get('probability', 0.95),
            sorting_conf.get('left_right_balance', 0.5),
            dict(_section(sorting_conf, 'actuators')),
            dict(_section(sorting_conf, 'path_probability')),
            _directions(_section(sorting_conf, 'directions')))

        routing_conf = _section(config, 'routing')
        routing = RoutingSettings(
            routing_conf.get('default_path', 'region_sort_line'),
            dict(_section(routing_conf, 'devices')),
            dict(_section(routing_conf, 'sort_codes')),
            dict(_section(routing_conf, 'regions')))
        if not routing.default_path:
            raise ConfigurationError("routing/default_path must name a path")

        signal = SignalSettings()
        apply_conf(_section(config, 'signal'), signal)
        if ':' not in signal.trigger:
            raise ConfigurationError("signal/trigger must have the form signal:value, not %r" % signal.trigger)
        device = DeviceSettings()
        apply_conf(_section(config, 'device'), device)
        relay = RelaySettings()
        apply_conf(_section(config, 'relay'), relay)
        return cls(connection, heartbeat, sorting, routing, signal, device, relay)

    @classmethod
    def load(cls, filename=None, name=config_name, directory=config_directory):
        """
        Loads and validates the layered configuration files.
        :raises ConfigurationError: a file is unreadable or a value is invalid
        """
        config = load_config(name, directory, filename)
        settings = cls.from_config(config)
        logger.info("loaded configuration %s%s" % (name, " with %s" % filename if filename else ""))
        return settings
