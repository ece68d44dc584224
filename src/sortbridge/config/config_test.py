import os
import tempfile
import unittest

from configobj import ConfigObj
from hamcrest import assert_that, is_, equal_to, has_property, is_not, calling, raises

from sortbridge.config.config import config_filename, config_flavor, load_config_file_base, map_os_name, \
    fetch_conf_path, apply_conf, load_schema, ConfigurationError


class Target:
    def __init__(self):
        self.value1 = None
        self.value2 = None


class ConfigTestCase(unittest.TestCase):

    def test_config_file_not_found(self):
        assert_that(calling(load_config_file_base).with_args('blah'), raises(IOError))

    def test_missing_optional_file_is_empty(self):
        assert_that(load_config_file_base('blah', must_exist=False), is_(equal_to(ConfigObj())))

    def test_config_file_invalid_syntax(self):
        with tempfile.TemporaryDirectory() as directory:
            file = os.path.join(directory, 'broken.cfg')
            with open(file, 'w') as f:
                f.write('[[section\n')
            assert_that(calling(load_config_file_base).with_args(file), raises(ConfigurationError, 'broken.cfg'))

    def test_can_retrieve_default_config_file(self):
        name = config_flavor('sortbridge', 'default')
        file = config_filename(name, os.path.dirname(__file__))
        assert_that(os.path.exists(file), is_(True), "expected config path %s to exist" % file)

    def test_map_os_name(self):
        assert_that(map_os_name('Windows'), is_('windows'))
        assert_that(map_os_name('Darwin'), is_('osx'))
        assert_that(map_os_name('darwin'), is_('osx'))

    def test_non_existent_config_path(self):
        sut = ConfigObj()
        assert_that(fetch_conf_path(sut, ['abcd']), is_(None))

    def test_apply_conf(self):
        conf = ConfigObj({'value1': 'def', 'missing_value': 3, 'nested': {'value2': 'x'}})
        target = Target()
        apply_conf(conf, target)
        assert_that(target.value1, is_('def'))
        assert_that(target.value2, is_(None))
        assert_that(target, is_not(has_property('missing_value')))

    def test_schema_checks_are_kept_whole(self):
        schema = load_schema('sortbridge', os.path.dirname(__file__))
        assert_that(schema['connection']['reconnect_interval'], is_('float(min=0.1, default=5)'))
        assert_that(schema['sorting']['path_probability']['__many__'], is_('float(min=0, max=1)'))

    def test_missing_schema(self):
        with tempfile.TemporaryDirectory() as directory:
            assert_that(calling(load_schema).with_args('absent', directory),
                        raises(ConfigurationError, 'absent.schema'))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
