import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

# The default extension for configuration files
config_extension = '.cfg'


class ConfigurationError(ConfigObjError):
    """ The configuration could not be read, or does not satisfy its schema. """


def config_flavor(name, flavor=None):
    """
    >>> config_flavor('sortbridge', 'default')
    'sortbridge.default'
    """
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory=None):
    """
    Determines the location of a config file in the given directory.
    """
    config_file = os.path.join(directory, name + config_extension)
    return config_file


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist, encoding='utf-8') \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise ConfigurationError(str(e) + ' at ' + file) from e


def config_flavor_file(name, directory, subpart=None) -> ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name.
    :param name:    The name of the base configuration
    :param subpart: The name of the specialization.
    :return: The ConfigObj for the configuration file, empty if the file does not exist.
    """
    configname = config_flavor(name, subpart)
    file = config_filename(configname, directory)
    return load_config_file_base(file, False)


def load_schema(name, directory):
    """
    Loads the "schema" specialization as a configspec. Checks are kept whole, so their arguments may
    contain commas.
    """
    file = config_filename(config_flavor(name, 'schema'), directory)
    try:
        return ConfigObj(file, list_values=False, _inspec=True, file_error=True, encoding='utf-8')
    except (ConfigObjError, IOError) as e:
        raise ConfigurationError("schema %s could not be read: %s" % (file, e)) from e


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def describe_errors(config, result):
    """ one line per key or section that failed validation """
    lines = []
    for sections, key, error in flatten_errors(config, result):
        location = '/'.join(sections + [key] if key is not None else sections)
        if key is None:
            lines.append("missing section %s" % location)
        elif error is False:
            lines.append("missing value %s" % location)
        else:
            lines.append("%s: %s" % (location, error))
    return lines


def load_config(name, directory, filename=None):
    """
    Loads all the configuration files that relate to the given name.
    Configurations are merged in this order, later ones overriding earlier ones:
    - the default specialization
    - the platform specialization
    - the user's ~/name.cfg
    - the base configuration in the directory
    - the explicit file, when given
    The merged configuration is then validated against the "schema" specialization.
    :param directory: the location of the configuration files
    :param filename: an additional configuration file that must exist
    :raises ConfigurationError: a file could not be parsed, or validation failed
    """
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    user_config = load_config_file_base(os.path.expanduser('~/' + name + config_extension), must_exist=False)
    local_config = config_flavor_file(name, directory)
    config = ConfigObj(encoding='utf-8')
    config.merge(default_config)
    config.merge(platform_config)
    config.merge(user_config)
    config.merge(local_config)
    if filename:
        try:
            config.merge(load_config_file_base(filename))
        except IOError as e:
            raise ConfigurationError("config file %s not found" % filename) from e

    config.configspec = load_schema(name, directory)
    result = config.validate(Validator(), preserve_errors=True)
    if result is not True:
        raise ConfigurationError("the config file %s failed validation: %s" %
                                 (name, '; '.join(describe_errors(config, result))))
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:        An iterable that lists the names of the sections to descend through
    :return: The configuration section identified by the path, or None
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return None
    return conf


def apply_conf(conf: Section, target):
    """
    Applies the scalar values in a configuration section to a target object, setting any attribute
    the target already has.
    """
    for k, v in conf.items():
        if not isinstance(v, Section) and hasattr(target, k):
            setattr(target, k, v)
