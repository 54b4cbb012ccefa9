"""Resolution of terminal colors to RGB triples

Character cells reference colors in one of four ways:
    - 'foreground' or 'background': default colors of the theme
    - an integer between 0 and 255: index in the 256 colors palette of the
    terminal (the first 16 colors come from the theme)
    - a string in '#rrggbb' format: 24-bit color
"""
import logging

logger = logging.getLogger(__name__)

DEFAULT_FOREGROUND = 'foreground'
DEFAULT_BACKGROUND = 'background'

# Base16 default dark
DEFAULT_COLORS = (
    (24, 24, 24), (171, 70, 66), (161, 181, 108), (247, 202, 136),
    (124, 175, 194), (186, 139, 175), (134, 193, 185), (216, 216, 216),
    (88, 88, 88), (171, 70, 66), (161, 181, 108), (247, 202, 136),
    (124, 175, 194), (186, 139, 175), (134, 193, 185), (248, 248, 248),
)

_CUBE_LEVELS = (0, 95, 135, 175, 215, 255)


class ColorError(Exception):
    """A color of the screen cannot be resolved to an RGB triple"""


def parse_hex_color(color):
    """Return the (r, g, b) tuple for a color in '#rrggbb' format"""
    if not isinstance(color, str) or len(color) != 7 or color[0] != '#':
        raise ColorError('Invalid color: {!r} (expected #rrggbb format)'.format(color))
    try:
        value = int(color[1:], 16)
    except ValueError as exc:
        raise ColorError('Invalid color: {!r}'.format(color)) from exc
    return (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF


def xterm_color(index):
    """Return the RGB value of a color of the xterm 256 colors palette that is
    not part of the 16 themable colors (index between 16 and 255)"""
    if 16 <= index <= 231:
        index -= 16
        return (_CUBE_LEVELS[index // 36],
                _CUBE_LEVELS[(index // 6) % 6],
                _CUBE_LEVELS[index % 6])
    if 232 <= index <= 255:
        level = 8 + (index - 232) * 10
        return level, level, level
    raise ColorError('Invalid extended color index: {}'.format(index))


class Palette:
    """Immutable mapping from terminal colors to RGB triples

    Instances are shared by all rasterization workers without
    synchronization: nothing is written after initialization.
    """
    __slots__ = ('_foreground', '_background', '_table')

    def __init__(self, foreground, background, colors):
        if len(colors) not in (8, 16):
            raise ColorError('A palette must define 8 or 16 colors, got {}'
                             .format(len(colors)))
        colors = tuple(tuple(c) for c in colors)
        if len(colors) == 8:
            # Bright colors default to their normal counterpart
            colors = colors + colors
        table = colors + tuple(xterm_color(i) for i in range(16, 256))
        self._foreground = tuple(foreground)
        self._background = tuple(background)
        self._table = table

    @classmethod
    def from_theme(cls, theme):
        """Build a palette from an AsciiCastV2Theme"""
        if theme is None:
            return cls(DEFAULT_COLORS[15], DEFAULT_COLORS[0], DEFAULT_COLORS)
        return cls(parse_hex_color(theme.fg),
                   parse_hex_color(theme.bg),
                   [parse_hex_color(c) for c in theme.palette.split(':')])

    @property
    def foreground(self):
        return self._foreground

    @property
    def background(self):
        return self._background

    def resolve(self, color):
        """Return the (r, g, b) tuple of the color

        Raise ColorError if the color is not a valid palette index, 24-bit
        color or default color"""
        if color == DEFAULT_FOREGROUND:
            return self._foreground
        if color == DEFAULT_BACKGROUND:
            return self._background
        if isinstance(color, int) and not isinstance(color, bool):
            if 0 <= color < len(self._table):
                return self._table[color]
            raise ColorError('Invalid palette index: {}'.format(color))
        return parse_hex_color(color)

    def validate_snapshot(self, snapshot):
        """Raise ColorError if any cell of the snapshot uses a color that
        cannot be resolved"""
        checked = set()
        for row in snapshot.buffer:
            for cell in row:
                for color in (cell.color, cell.background_color):
                    if color in checked:
                        continue
                    try:
                        self.resolve(color)
                    except ColorError as exc:
                        raise ColorError('Frame #{}: {}'.format(snapshot.index, exc)) from exc
                    checked.add(color)

    def __eq__(self, other):
        if not isinstance(other, Palette):
            return NotImplemented
        return (self._foreground, self._background, self._table) == \
               (other._foreground, other._background, other._table)

    def __hash__(self):
        return hash((self._foreground, self._background, self._table))

    def __repr__(self):
        return 'Palette(foreground={}, background={})'.format(self._foreground,
                                                              self._background)
