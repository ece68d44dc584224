import os
import tempfile
from unittest import TestCase
from unittest.mock import patch

from hamcrest import assert_that, is_, calling, raises, has_entries, contains_exactly

from sortbridge.balancer import LEFT, RIGHT
from sortbridge.config import config
from sortbridge.config.config import ConfigurationError
from sortbridge.config.settings import Settings, SortingSettings, ConnectionSettings


class SettingsLoadTest(TestCase):
    def setUp(self):
        self.home = tempfile.TemporaryDirectory()
        patcher = patch.object(config.os.path, 'expanduser', lambda p: p.replace('~', self.home.name))
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self.home.cleanup)

    def write(self, text, name='override.cfg'):
        path = os.path.join(self.home.name, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        return path

    def test_shipped_defaults(self):
        settings = Settings.load()
        connection = settings.connection
        assert_that(connection.addresses(), is_(['127.0.0.1:8080']))
        assert_that(connection.reconnect_interval, is_(5))
        assert_that(connection.max_reconnect_attempts, is_(10))
        assert_that(connection.network_timeout, is_(30))
        assert_that(connection.ping_interval, is_(20))
        assert_that(settings.heartbeat.timeout, is_(90))
        assert_that(settings.heartbeat.check_interval, is_(15))
        sorting = settings.sorting
        assert_that(sorting.actuator_count('sku_line_1'), is_(6))
        assert_that(sorting.actuator_count('scan_line_1_start'), is_(1))
        assert_that(sorting.probability('sku_line_1'), is_(0.95))
        assert_that(sorting.directions('sku_line_1'), contains_exactly(LEFT))
        assert_that(sorting.directions('region_sort_line'), contains_exactly(LEFT, RIGHT))
        assert_that(settings.routing.default_path, is_('region_sort_line'))
        assert_that(settings.routing.devices['SRT_SKU_02_03'], is_('sku_line_2'))
        assert_that(settings.routing.sort_codes['A01'], is_('scan_line_1_start'))
        assert_that(settings.signal.trigger, is_('PKG:1'))
        assert_that(settings.relay.enabled, is_(False))

    def test_file_overrides(self):
        path = self.write("""
[connection]
url = 10.0.0.1:9000
backend_servers = 10.0.0.2:9001, 10.0.0.3:9002
max_reconnect_attempts = 3

[sorting]
    [[path_probability]]
    sku_line_1 = 0.0
    [[directions]]
    sku_line_2 = left, right
""")
        settings = Settings.load(path)
        assert_that(settings.connection.addresses(), is_(['10.0.0.1:9000', '10.0.0.2:9001', '10.0.0.3:9002']))
        assert_that(settings.connection.max_reconnect_attempts, is_(3))
        assert_that(settings.sorting.probability('sku_line_1'), is_(0.0))
        assert_that(settings.sorting.probability('sku_line_2'), is_(0.95))
        assert_that(settings.sorting.directions('sku_line_2'), contains_exactly(LEFT, RIGHT))

    def test_user_file_is_layered(self):
        self.write("[heartbeat]\ntimeout = 120\n", 'sortbridge.cfg')
        assert_that(Settings.load().heartbeat.timeout, is_(120))

    def test_invalid_value(self):
        path = self.write("[connection]\nmax_reconnect_attempts = many\n")
        assert_that(calling(Settings.load).with_args(path),
                    raises(ConfigurationError, 'connection/max_reconnect_attempts'))

    def test_probability_out_of_range(self):
        path = self.write("[sorting]\nprobability = 1.5\n")
        assert_that(calling(Settings.load).with_args(path), raises(ConfigurationError))

    def test_zero_interval(self):
        path = self.write("[heartbeat]\ncheck_interval = 0\n")
        assert_that(calling(Settings.load).with_args(path), raises(ConfigurationError, 'heartbeat/check_interval'))

    def test_unknown_direction(self):
        path = self.write("[sorting]\n    [[directions]]\n    sku_line_1 = up,\n")
        assert_that(calling(Settings.load).with_args(path), raises(ConfigurationError, 'unknown direction up'))

    def test_bad_trigger(self):
        path = self.write("[signal]\ntrigger = PKG\n")
        assert_that(calling(Settings.load).with_args(path), raises(ConfigurationError, 'signal:value'))

    def test_missing_file(self):
        assert_that(calling(Settings.load).with_args(os.path.join(self.home.name, 'absent.cfg')),
                    raises(ConfigurationError, 'not found'))

    def test_syntax_error(self):
        path = self.write("[[[too deep\n")
        assert_that(calling(Settings.load).with_args(path), raises(ConfigurationError))


class SettingsDefaultsTest(TestCase):
    def test_probability_override(self):
        sut = SortingSettings(probability=0.5, probabilities={'a': 0.0, 'b': None})
        assert_that(sut.probability('a'), is_(0.0))
        assert_that(sut.probability('b'), is_(0.5))
        assert_that(sut.probability('c'), is_(0.5))

    def test_empty_directions_mean_both(self):
        sut = SortingSettings(directions={'a': []})
        assert_that(sut.directions('a'), contains_exactly(LEFT, RIGHT))

    def test_addresses_skip_blank(self):
        assert_that(ConnectionSettings('a:1', ['', 'b:2']).addresses(), is_(['a:1', 'b:2']))

    def test_constructed_defaults_match(self):
        settings = Settings()
        assert_that(settings.device.device_info(), has_entries(deviceId='SORT_BRIDGE_01'))
        assert_that(settings.sorting.actuator_count('anything'), is_(0))
