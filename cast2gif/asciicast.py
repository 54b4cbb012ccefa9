"""Reading of asciicast recordings

Recordings in asciicast v1 and v2 format are both accepted and are always
returned as v2 records. The formats are described here:
    [1] https://github.com/asciinema/asciinema/blob/develop/doc/asciicast-v1.md
    [2] https://github.com/asciinema/asciinema/blob/develop/doc/asciicast-v2.md

`Session` is what the rest of the package uses: it checks the header of a
recording as soon as it is created and hands out lazy iterators over its
events that can be restarted from the beginning.
"""
import json
import logging
from collections import namedtuple

logger = logging.getLogger(__name__)


class AsciiCastError(Exception):
    pass


class MalformedSession(AsciiCastError):
    """The recording is missing, unreadable or structurally invalid"""


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_types(record, types):
    for name, expected in zip(record._fields, types):
        value = getattr(record, name)
        if isinstance(value, bool) or not isinstance(value, expected):
            raise AsciiCastError('Invalid {} in {}: {!r}'
                                 .format(name, type(record).__name__, value))


def is_color(color):
    """Return True if color is a string in '#rrggbb' format"""
    if not isinstance(color, str) or len(color) != 7 or not color.startswith('#'):
        return False
    try:
        int(color[1:], 16)
    except ValueError:
        return False
    return True


_AsciiCastV2Theme = namedtuple('AsciiCastV2Theme', ['fg', 'bg', 'palette'])


class AsciiCastV2Theme(_AsciiCastV2Theme):
    """Color theme of the recorded terminal, colors in '#rrggbb' format

    fg: Default text color
    bg: Default background color
    palette: 8 or 16 colors separated by colons. Colors beyond the first 16
    are ignored, as are colors beyond the first 8 if there are less than 16
    valid ones.
    """
    def __new__(cls, fg, bg, palette):
        for name, color in (('foreground', fg), ('background', bg)):
            if not is_color(color):
                raise AsciiCastError('Invalid {} color: {}'.format(name, color))

        colors = palette.split(':') if isinstance(palette, str) else []
        for count in (16, 8):
            if len(colors) >= count and all(is_color(c) for c in colors[:count]):
                return super().__new__(cls, fg, bg, ':'.join(colors[:count]))
        raise AsciiCastError('Invalid palette "{}": 8 or 16 colors expected'.format(palette))

    @classmethod
    def from_dict(cls, attributes):
        if not isinstance(attributes, dict):
            raise AsciiCastError('Invalid theme: {}'.format(attributes))
        try:
            return cls(attributes['fg'], attributes['bg'], attributes['palette'])
        except KeyError as exc:
            raise AsciiCastError('Missing {} in theme'.format(exc)) from exc

    @property
    def colors(self):
        """List of the 8 or 16 colors of the palette"""
        return self.palette.split(':')


_AsciiCastV2Header = namedtuple('AsciiCastV2Header', ['version', 'width', 'height', 'theme',
                                                      'idle_time_limit'])


class AsciiCastV2Header(_AsciiCastV2Header):
    """First record of a recording

    version: Always 2
    width: Number of columns of the terminal
    height: Number of lines of the terminal
    theme: AsciiCastV2Theme or None
    idle_time_limit: Maximum pause between two events in seconds, or None
    """
    _types = (int, int, int, (type(None), AsciiCastV2Theme), (type(None), int, float))

    def __new__(cls, version, width, height, theme=None, idle_time_limit=None):
        header = super().__new__(cls, version, width, height, theme, idle_time_limit)
        _check_types(header, cls._types)
        if version != 2:
            raise AsciiCastError('Unsupported asciicast version: {}'.format(version))
        if width <= 0 or height <= 0:
            raise AsciiCastError('Invalid terminal size: {}x{}'.format(width, height))
        return header

    @classmethod
    def from_dict(cls, attributes):
        theme = attributes.get('theme')
        if theme is not None:
            theme = AsciiCastV2Theme.from_dict(theme)
        return cls(attributes.get('version'), attributes.get('width'),
                   attributes.get('height'), theme, attributes.get('idle_time_limit'))


_AsciiCastV2Event = namedtuple('AsciiCastV2Event', ['time', 'event_type', 'event_data',
                                                    'duration'])


class AsciiCastV2Event(_AsciiCastV2Event):
    """Record of something that happened in the terminal

    time: Seconds elapsed since the beginning of the recording
    event_type: 'o' for data written to the terminal, 'i' for data typed
    by the user. Other types (markers, resizes) are kept but not replayed.
    event_data: Data of the event
    duration: Unused, always None for events read from a file
    """
    _types = ((int, float), str, str, (type(None), int, float))

    def __new__(cls, time, event_type, event_data, duration=None):
        event = super().__new__(cls, time, event_type, event_data, duration)
        _check_types(event, cls._types)
        return event

    @classmethod
    def from_list(cls, attributes):
        try:
            time, event_type, event_data = attributes
        except ValueError as exc:
            raise AsciiCastError('Expected [time, type, data], got {}'
                                 .format(attributes)) from exc
        return cls(time, event_type, event_data)


def parse_record(line):
    """Return the AsciiCastV2Header or AsciiCastV2Event encoded by a line of
    an asciicast v2 file

    Raise AsciiCastError if the line is not a valid record"""
    try:
        value = json.loads(line)
    except json.JSONDecodeError as exc:
        raise AsciiCastError('Invalid JSON: {}'.format(exc)) from exc
    if isinstance(value, dict):
        return AsciiCastV2Header.from_dict(value)
    if isinstance(value, list):
        return AsciiCastV2Event.from_list(value)
    excerpt = line if len(line) < 20 else '{}...'.format(line[:20])
    raise AsciiCastError('Unknown record type: "{}"'.format(excerpt))


def _v1_records(data):
    """Yield v2 records equivalent to a recording in asciicast v1 format"""
    try:
        recording = json.loads(data)
    except json.JSONDecodeError as exc:
        raise AsciiCastError('Invalid JSON: {}'.format(exc)) from exc
    if not isinstance(recording, dict):
        raise AsciiCastError('Invalid asciicast v1 data: expected a JSON object')
    missing = {'version', 'width', 'height', 'stdout'} - set(recording)
    if missing:
        raise AsciiCastError('Missing attributes in asciicast v1 data: {}'
                             .format(', '.join(sorted(missing))))
    if recording['version'] != 1:
        raise AsciiCastError('Unsupported asciicast version: {}'.format(recording['version']))

    yield AsciiCastV2Header(2, recording['width'], recording['height'])

    stdout = recording['stdout']
    if not isinstance(stdout, list):
        raise AsciiCastError('Invalid stdout attribute: expected a list')

    # v1 stores the delay since the previous event, v2 the time since the start
    time = 0
    for frame in stdout:
        if (not isinstance(frame, list) or len(frame) != 2 or not _is_number(frame[0])
                or not isinstance(frame[1], str)):
            raise AsciiCastError('Invalid stdout frame: {}'.format(frame))
        delay, data = frame
        time += delay
        yield AsciiCastV2Event(time, 'o', data)


def read_records(filename):
    """Yield the records of an asciicast v1 or v2 file as v2 records, header
    first

    Raise AsciiCastError if a record is invalid"""
    with open(filename, 'r', encoding='utf-8') as cast_file:
        try:
            header = parse_record(cast_file.readline())
        except AsciiCastError:
            header = None

        if not isinstance(header, AsciiCastV2Header):
            # Not a JSON line: the whole file may be a v1 JSON document
            cast_file.seek(0)
            yield from _v1_records(cast_file.read())
            return

        yield header
        for line_number, line in enumerate(cast_file, start=2):
            if not line.strip():
                continue
            try:
                record = parse_record(line)
            except AsciiCastError as exc:
                raise AsciiCastError('Invalid record on line {}: {}'
                                     .format(line_number, exc)) from exc
            if not isinstance(record, AsciiCastV2Event):
                raise AsciiCastError('Unexpected header on line {}'.format(line_number))
            yield record


class Session:
    """Recorded terminal session

    The header is read and validated when the session is created. Events are
    read lazily by `events`, which reopens the recording on every call so the
    sequence can be replayed from the start as many times as needed.

    Every failure to read the recording is reported as MalformedSession.
    """
    def __init__(self, filename, idle_time_limit=None):
        self.filename = filename
        records = self._records()
        try:
            header = next(records, None)
        finally:
            records.close()

        if header is None:
            raise MalformedSession('Missing header in session file {}'.format(filename))
        self.header = header
        if idle_time_limit is None:
            idle_time_limit = header.idle_time_limit
        if idle_time_limit is not None and idle_time_limit <= 0:
            raise MalformedSession('Invalid idle time limit: {}'.format(idle_time_limit))
        self.idle_time_limit = idle_time_limit

    @property
    def columns(self):
        return self.header.width

    @property
    def lines(self):
        return self.header.height

    def _records(self):
        try:
            yield from read_records(self.filename)
        except MalformedSession:
            raise
        except (AsciiCastError, OSError, ValueError) as exc:
            raise MalformedSession('Unable to read session file {}: {}'
                                   .format(self.filename, exc)) from exc

    def events(self):
        """Yield the events of the session in chronological order

        Gaps between two consecutive events longer than the idle time limit
        are shortened to the limit.
        Raise MalformedSession if a record is invalid or if timestamps are not
        monotonic"""
        records = self._records()
        next(records)

        last_time = 0
        dropped_time = 0
        for count, event in enumerate(records):
            if event.time < 0:
                raise MalformedSession('Negative timestamp for event #{}: {}'
                                       .format(count, event.time))
            if event.time < last_time:
                raise MalformedSession('Event #{} is out of order: {} < {}'
                                       .format(count, event.time, last_time))

            elapsed = event.time - last_time
            if self.idle_time_limit is not None and elapsed > self.idle_time_limit:
                dropped_time += elapsed - self.idle_time_limit
            last_time = event.time

            if dropped_time:
                event = event._replace(time=event.time - dropped_time)
            yield event

    def validate(self):
        """Read the whole session and return a tuple made of the number of
        output events and the timestamp of the last one (the duration of the
        session)

        Raise MalformedSession if any record is invalid"""
        event_count = 0
        duration = 0
        for event in self.events():
            if event.event_type == 'o':
                event_count += 1
                duration = event.time

        logger.debug('Session {}: {} output events over {:.3f}s'
                     .format(self.filename, event_count, duration))
        return event_count, duration
