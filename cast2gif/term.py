"""Terminal session replay

This module exposes
    - `TerminalState`, which replays asciicast events through the pyte
    terminal emulator and copies its screen out as immutable snapshots
    - `sample_frames`, which samples the replayed session at a fixed interval
    and produces one snapshot per sample tick

Snapshots are made of CharacterCell instances and are never modified once
created so they can be handed to rasterization workers running in other
threads.
"""
import logging
import math
from collections import namedtuple

import pyte
import pyte.graphics
import pyte.screens

logger = logging.getLogger(__name__)

# pyte reports the 16 themable colors as RGB values, which makes color 0
# (themable) impossible to tell apart from color 16 (always #000000).
# Naming them keeps the distinction; names are turned into indices below.
BASE_COLORS = ['black', 'red', 'green', 'brown', 'blue', 'magenta', 'cyan', 'white']
NAMED_COLORS = BASE_COLORS + ['bright{}'.format(name) for name in BASE_COLORS]
pyte.graphics.FG_BG_256 = NAMED_COLORS + pyte.graphics.FG_BG_256[16:]

# Tolerance used when comparing event timestamps to sample ticks so that
# floating point errors (0.1 * 3 > 0.3) do not move an event to the next tick
EPSILON = 1e-9

_CharacterCell = namedtuple('CharacterCell', ['text', 'color', 'background_color', 'bold',
                                              'italics', 'underscore', 'strikethrough'])


def _pyte_color(color, default):
    if color == 'default':
        return default
    if color in NAMED_COLORS:
        return NAMED_COLORS.index(color)
    if len(color) == 6:
        # ValueError if not hexadecimal
        int(color, 16)
        return '#{}'.format(color.lower())
    raise ValueError('Invalid color: {}'.format(color))


class CharacterCell(_CharacterCell):
    """Content and style of one cell of the screen

    text: Character(s) displayed in the cell, empty for the right half of a
    wide character
    color, background_color: 'foreground', 'background', a palette index
    (0 to 15) or a '#rrggbb' string
    bold, italics, underscore, strikethrough: Style flags
    """
    def __new__(cls, text, color='foreground', background_color='background', bold=False,
                italics=False, underscore=False, strikethrough=False):
        return super().__new__(cls, text, color, background_color, bold, italics,
                               underscore, strikethrough)

    @classmethod
    def from_pyte(cls, char):
        """Convert a pyte.screens.Char, applying bold to base colors (they
        become bright) and reverse video"""
        fg = char.fg
        if char.bold and fg in BASE_COLORS:
            fg = NAMED_COLORS[BASE_COLORS.index(fg) + 8]
        colors = (_pyte_color(fg, 'foreground'), _pyte_color(char.bg, 'background'))
        if char.reverse:
            colors = colors[::-1]
        return cls(char.data, *colors, bold=char.bold, italics=char.italics,
                   underscore=char.underscore, strikethrough=char.strikethrough)


_ScreenSnapshot = namedtuple('ScreenSnapshot', ['index', 'time', 'columns', 'lines',
                                                'buffer', 'cursor'])


class ScreenSnapshot(_ScreenSnapshot):
    """Immutable copy of the screen at a sample tick

    index: Frame index of the snapshot (0, 1, 2...)
    time: Sample tick in seconds
    columns: Number of columns of the screen
    lines: Number of lines of the screen
    buffer: Tuple of lines, each line being a tuple of CharacterCell
    cursor: (column, line) position of the cursor or None if it is hidden
    """
    def text(self):
        """Return the content of the screen as a list of strings"""
        return [''.join(cell.text for cell in row) for row in self.buffer]


class TerminalState:
    """Replay terminal output events against a single screen

    Instances are not thread safe. They are meant to be driven by a single
    thread which copies the screen out with `snapshot`.
    """
    def __init__(self, columns, lines):
        self.columns = columns
        self.lines = lines
        self._screen = pyte.Screen(columns, lines)
        self._stream = pyte.Stream(self._screen)

    def advance(self, event):
        """Feed the data of an output event to the terminal emulator

        Events other than terminal output (input, markers, resize) do not
        change the screen."""
        if event.event_type != 'o':
            logger.debug('Skipping event of type "{}" at {}'
                         .format(event.event_type, event.time))
            return
        self._stream.feed(event.event_data)

    def snapshot(self, index, time):
        """Return a ScreenSnapshot of the current state of the screen"""
        screen = self._screen
        default_char = screen.default_char
        buffer = []
        for row in range(screen.lines):
            line = screen.buffer[row]
            buffer.append([CharacterCell.from_pyte(line.get(column, default_char))
                           for column in range(screen.columns)])

        cursor = None
        if not screen.cursor.hidden:
            # pyte leaves the cursor past the right edge after a write to
            # the last column. It is drawn on the last column.
            row = screen.cursor.y
            column = min(screen.cursor.x, screen.columns - 1)
            if 0 <= row < screen.lines and 0 <= column:
                cursor = (column, row)
                data = screen.buffer[row][column].data or ' '
                cursor_char = pyte.screens.Char(data=data,
                                                fg=screen.cursor.attrs.fg,
                                                bg=screen.cursor.attrs.bg,
                                                reverse=True)
                buffer[row][column] = CharacterCell.from_pyte(cursor_char)

        return ScreenSnapshot(index, time, screen.columns, screen.lines,
                              tuple(tuple(line) for line in buffer), cursor)


def frame_count(duration, interval):
    """Return the number of frames sampled from a session lasting `duration`
    seconds with one sample every `interval` seconds"""
    return int(math.floor(duration / interval + EPSILON)) + 1


def sample_frames(state, events, interval, duration):
    """Yield one ScreenSnapshot per sample tick

    Tick number k is at time k * interval. All events with a timestamp lower
    than or equal to a tick are replayed before the snapshot of this tick is
    taken. The last snapshot always shows the final state of the screen: any
    event left after the last tick is replayed before it is taken.

    :param state: TerminalState the events are replayed against
    :param events: Iterable of events in chronological order
    :param interval: Time between two sample ticks in seconds
    :param duration: Timestamp of the last output event in seconds
    """
    events = iter(events)
    event = next(events, None)
    if event is None:
        return

    last_index = frame_count(duration, interval) - 1
    for index in range(last_index + 1):
        tick = index * interval
        if index == last_index:
            while event is not None:
                state.advance(event)
                event = next(events, None)
        else:
            while event is not None and event.time <= tick + EPSILON:
                state.advance(event)
                event = next(events, None)

        yield state.snapshot(index, tick)
