"""Configuration of cast2gif

Settings come from an INI file: the one found in the user configuration
directory if it exists, otherwise the default configuration shipped with the
package. The GLOBAL section holds default settings, every other section
defines a color theme.
"""
import configparser
import logging
import math
import os
import pkgutil
from collections import namedtuple

from cast2gif.asciicast import AsciiCastError, AsciiCastV2Theme

logger = logging.getLogger(__name__)

PKG_CONF_PATH = 'data/cast2gif.ini'
USER_CONF_NAME = 'cast2gif.ini'

DEFAULT_SAMPLING_INTERVAL = 0.1
DEFAULT_FONT = 'DejaVuSansMono.ttf'
DEFAULT_FONT_SIZE = 14
DEFAULT_LOOP_DELAY = 1000


class ConfigurationError(Exception):
    pass


_RenderSettings = namedtuple('RenderSettings', [
    'sampling_interval', 'workers', 'slack', 'font', 'bold_font', 'italic_font',
    'bold_italic_font', 'font_size', 'loop_delay', 'idle_time_limit', 'theme',
])


class RenderSettings(_RenderSettings):
    """Settings of a conversion

    sampling_interval: Time between two frames in seconds
    workers: Number of rasterization threads (None for one per CPU)
    slack: Number of frames allowed in flight on top of one per worker
    font, bold_font, italic_font, bold_italic_font: TrueType fonts (file names
    or paths)
    font_size: Font size in pixels
    loop_delay: Pause at the end of the animation in milliseconds
    idle_time_limit: Maximum pause between two events in seconds (None to
    use the value from the recording)
    theme: AsciiCastV2Theme overriding the theme of the recording, or None
    """
    def __new__(cls, sampling_interval=DEFAULT_SAMPLING_INTERVAL, workers=None, slack=2,
                font=DEFAULT_FONT, bold_font=None, italic_font=None, bold_italic_font=None,
                font_size=DEFAULT_FONT_SIZE, loop_delay=DEFAULT_LOOP_DELAY,
                idle_time_limit=None, theme=None):
        return super().__new__(cls, sampling_interval, workers, slack, font, bold_font,
                               italic_font, bold_italic_font, font_size, loop_delay,
                               idle_time_limit, theme)


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_settings(settings):
    """Return settings unchanged, raise ConfigurationError if any of them is
    invalid"""
    interval = settings.sampling_interval
    if not _is_number(interval) or not math.isfinite(interval) or interval <= 0:
        raise ConfigurationError('Invalid sampling interval: {} (expected a positive '
                                 'number of seconds)'.format(interval))
    if settings.workers is not None and (not isinstance(settings.workers, int)
                                         or settings.workers < 1):
        raise ConfigurationError('Invalid number of workers: {}'.format(settings.workers))
    if not isinstance(settings.slack, int) or settings.slack < 0:
        raise ConfigurationError('Invalid slack: {}'.format(settings.slack))
    if not isinstance(settings.font_size, int) or settings.font_size < 1:
        raise ConfigurationError('Invalid font size: {}'.format(settings.font_size))
    if not _is_number(settings.loop_delay) or settings.loop_delay < 0:
        raise ConfigurationError('Invalid loop delay: {}'.format(settings.loop_delay))
    if settings.idle_time_limit is not None and (not _is_number(settings.idle_time_limit)
                                                 or settings.idle_time_limit <= 0):
        raise ConfigurationError('Invalid idle time limit: {}'
                                 .format(settings.idle_time_limit))
    if not settings.font:
        raise ConfigurationError('Missing font')
    return settings


def validate_geometry(columns, lines):
    """Raise ConfigurationError if the terminal size is invalid"""
    for value in (columns, lines):
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError('Invalid terminal size: {}x{}'.format(columns, lines))
    return columns, lines


def validate_interval(interval):
    """Parse a duration given in seconds ('0.1', '0.1s') or in milliseconds
    ('100ms') and return it in seconds

    Raise ValueError if the duration is not a positive number"""
    interval = interval.strip().lower()
    if interval.endswith('ms'):
        seconds = float(interval[:-len('ms')]) / 1000
    elif interval.endswith('s'):
        seconds = float(interval[:-len('s')])
    else:
        seconds = float(interval)
    if not math.isfinite(seconds) or seconds <= 0:
        raise ValueError('interval must be greater than 0')
    return seconds


class CaseInsensitiveDict(dict):
    """Dictionary with case insensitive string keys"""
    def __init__(self, *args, **kwargs):
        super().__init__()
        for key, value in dict(*args, **kwargs).items():
            self[key] = value

    @staticmethod
    def _key(key):
        return key.lower() if isinstance(key, str) else key

    def __setitem__(self, key, value):
        super().__setitem__(self._key(key), value)

    def __getitem__(self, key):
        return super().__getitem__(self._key(key))

    def __delitem__(self, key):
        super().__delitem__(self._key(key))

    def __contains__(self, key):
        return super().__contains__(self._key(key))

    def get(self, key, default=None):
        return super().get(self._key(key), default)


def _parse_theme(name, section):
    try:
        fg = section['foreground']
        bg = section['background']
    except KeyError as exc:
        raise ConfigurationError('Missing {} in theme "{}"'.format(exc, name)) from exc

    colors = []
    for index in range(16):
        color = section.get('color{}'.format(index))
        if color is None:
            break
        colors.append(color)
    try:
        return AsciiCastV2Theme(fg, bg, ':'.join(colors))
    except AsciiCastError as exc:
        raise ConfigurationError('Invalid theme "{}": {}'.format(name, exc)) from exc


def _parse_global(section):
    global_options = {}
    try:
        global_options['theme'] = section['theme']
        global_options['font'] = section['font']
    except KeyError as exc:
        raise ConfigurationError('Missing {} in GLOBAL section'.format(exc)) from exc

    converters = {
        'font_size': int,
        'sampling_interval': validate_interval,
        'loop_delay': int,
        'idle_time_limit': float,
        'bold_font': str,
        'italic_font': str,
        'bold_italic_font': str,
    }
    for option, converter in converters.items():
        value = section.get(option)
        if value is None:
            continue
        try:
            global_options[option] = converter(value)
        except ValueError as exc:
            raise ConfigurationError('Invalid value for {}: "{}"'
                                     .format(option, value)) from exc
    return global_options


def conf_to_dict(configuration):
    """Read a configuration string in INI format and return a dictionary

    Raise ConfigurationError if the configuration is invalid"""
    parser = configparser.ConfigParser(comment_prefixes=(';',))
    try:
        parser.read_string(configuration)
    except configparser.Error as exc:
        raise ConfigurationError('Invalid configuration file: {}'.format(exc)) from exc

    config_dict = CaseInsensitiveDict()
    global_section = None
    for section_name in parser.sections():
        if section_name.lower() == 'global':
            global_section = parser[section_name]
        else:
            config_dict[section_name] = _parse_theme(section_name, parser[section_name])

    if global_section is None:
        raise ConfigurationError('Missing GLOBAL section in configuration file')
    config_dict['GLOBAL'] = _parse_global(global_section)

    theme_name = config_dict['GLOBAL']['theme']
    if theme_name.lower() == 'global' or theme_name not in config_dict:
        raise ConfigurationError('No theme named "{}" in configuration file'
                                 .format(theme_name))
    return config_dict


def default_configuration():
    """Return the configuration shipped with the package"""
    data = pkgutil.get_data(__name__, PKG_CONF_PATH).decode('utf-8')
    return conf_to_dict(data)


def user_config_path():
    """Return the path of the user configuration file"""
    try:
        config_dir = os.environ['XDG_CONFIG_HOME']
    except KeyError:
        try:
            config_dir = os.path.join(os.environ['HOME'], '.config')
        except KeyError:
            return None
    return os.path.join(config_dir, 'cast2gif', USER_CONF_NAME)


def init_read_conf():
    """Return the user configuration if a configuration file exists, the
    default configuration otherwise"""
    path = user_config_path()
    if path is not None and os.path.isfile(path):
        logger.debug('Reading configuration from {}'.format(path))
        with open(path, 'r', encoding='utf-8') as config_file:
            return conf_to_dict(config_file.read())
    return default_configuration()


def settings_from_conf(configuration, theme_name=None, **overrides):
    """Build RenderSettings from the GLOBAL section of the configuration

    If `theme_name` is given, the corresponding theme overrides the theme of
    the recording. Other keyword arguments override settings read from the
    configuration, except those set to None."""
    global_options = configuration['GLOBAL']
    theme = None
    if theme_name is not None:
        if theme_name.lower() == 'global' or theme_name not in configuration:
            raise ConfigurationError('Unknown theme "{}"'.format(theme_name))
        theme = configuration[theme_name]

    options = {name: value for name, value in global_options.items()
               if name in RenderSettings._fields and name != 'theme'}
    options['theme'] = theme
    options.update({name: value for name, value in overrides.items() if value is not None})
    return validate_settings(RenderSettings(**options))


def fallback_theme(configuration):
    """Return the default theme of the configuration"""
    return configuration[configuration['GLOBAL']['theme']]
