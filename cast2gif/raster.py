"""Rasterization of screen snapshots

`render_frame` turns a ScreenSnapshot into a PixelFrame. It has no state of
its own: glyph bitmaps come from a GlyphCache shared by all the workers of
the pipeline and colors from an immutable Palette, so it can be called from
several threads at once on different snapshots.
"""
import logging
import threading
from collections import namedtuple

from PIL import Image, ImageDraw, ImageFont
from wcwidth import wcswidth

logger = logging.getLogger(__name__)

PixelFrame = namedtuple('PixelFrame', ['index', 'time', 'image'])
PixelFrame.__doc__ = 'Rasterized snapshot'
PixelFrame.index.__doc__ = 'Frame index of the snapshot the image was rendered from'
PixelFrame.time.__doc__ = 'Sample tick of the snapshot in seconds'
PixelFrame.image.__doc__ = 'Pillow image in RGB mode'

# Errors raised by a glyph renderer for a single character. They are
# recovered locally by drawing the placeholder glyph instead.
GLYPH_ERRORS = (KeyError, ValueError, UnicodeError)


class RenderError(Exception):
    """Unrecoverable failure of the rendering resources"""


class FontGlyphRenderer:
    """Render glyphs to grayscale masks using TrueType fonts

    :param font: Path or file name of a TrueType font. If the font cannot be
    loaded, the default font of Pillow is used instead.
    :param font_size: Size of the font in pixels
    :param bold_font: Optional font used for bold text
    :param italic_font: Optional font used for text in italics
    :param bold_italic_font: Optional font used for bold text in italics.
    Defaults to the bold font if there is one, to the italic font otherwise.
    """
    def __init__(self, font, font_size, bold_font=None, italic_font=None,
                 bold_italic_font=None):
        self.font_size = font_size
        self._regular = self._load(font, font_size)
        self._bold = self._load(bold_font, font_size) if bold_font else self._regular
        self._italic = self._load(italic_font, font_size) if italic_font else self._regular
        if bold_italic_font:
            self._bold_italic = self._load(bold_italic_font, font_size)
        elif bold_font:
            self._bold_italic = self._bold
        else:
            self._bold_italic = self._italic

        left, _, right, _ = self._regular.getbbox('M')
        self.cell_width = max(1, int(round(self._regular.getlength('M'))), right - left)
        if hasattr(self._regular, 'getmetrics'):
            ascent, descent = self._regular.getmetrics()
            self.cell_height = max(1, ascent + descent)
        else:
            _, top, _, bottom = self._regular.getbbox('Mjg|')
            self.cell_height = max(1, bottom - top)
        logger.debug('Character cell size: {}x{} pixels'
                     .format(self.cell_width, self.cell_height))

    @staticmethod
    def _load(font, font_size):
        try:
            return ImageFont.truetype(font, font_size)
        except OSError:
            logger.warning('Unable to load font "{}", using the default font instead'
                           .format(font))
        return ImageFont.load_default(font_size)

    def font_for(self, bold, italics):
        if bold and italics:
            return self._bold_italic
        if bold:
            return self._bold
        if italics:
            return self._italic
        return self._regular

    def render_glyph(self, text, bold, italics, width):
        """Return a mask (Pillow image in L mode) of the text spanning `width`
        cells"""
        font = self.font_for(bold, italics)
        mask = Image.new('L', (self.cell_width * width, self.cell_height), 0)
        ImageDraw.Draw(mask).text((0, 0), text, fill=255, font=font)
        return mask


def placeholder_glyph(cell_width, cell_height, width=1):
    """Return the mask of a hollow box used for characters that cannot be
    rendered"""
    mask = Image.new('L', (cell_width * width, cell_height), 0)
    box = (1, 1, cell_width * width - 2, cell_height - 2)
    if box[2] > box[0] and box[3] > box[1]:
        ImageDraw.Draw(mask).rectangle(box, outline=255)
    return mask


class GlyphCache:
    """Glyph masks shared by all rasterization workers

    Lookups of glyphs already rendered do not take the lock. A miss takes the
    lock and checks the cache again before rendering so a glyph is rendered
    at most once even if several workers need it at the same time.
    """
    def __init__(self, renderer):
        self.renderer = renderer
        self.cell_width = renderer.cell_width
        self.cell_height = renderer.cell_height
        self.misses = 0
        self.placeholders = 0
        self._glyphs = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._glyphs)

    def get(self, text, bold=False, italics=False):
        key = (text, bold, italics)
        glyph = self._glyphs.get(key)
        if glyph is None:
            with self._lock:
                glyph = self._glyphs.get(key)
                if glyph is None:
                    glyph = self._render(text, bold, italics)
                    self._glyphs[key] = glyph
        return glyph

    def _render(self, text, bold, italics):
        self.misses += 1
        width = wcswidth(text)
        if width < 0:
            logger.debug('Unprintable text {!r}, using placeholder'.format(text))
            self.placeholders += 1
            return placeholder_glyph(self.cell_width, self.cell_height)

        width = max(1, width)
        try:
            return self.renderer.render_glyph(text, bold, italics, width)
        except GLYPH_ERRORS as exc:
            logger.debug('Unable to render {!r} ({}), using placeholder'.format(text, exc))
            self.placeholders += 1
            return placeholder_glyph(self.cell_width, self.cell_height, width)
        except OSError as exc:
            raise RenderError('Font resource failure while rendering {!r}: {}'
                              .format(text, exc)) from exc


def render_frame(snapshot, glyph_cache, palette, cell_width, cell_height):
    """Return a PixelFrame representing the snapshot

    :param snapshot: ScreenSnapshot to render
    :param glyph_cache: GlyphCache shared by all workers
    :param palette: Palette used to resolve the colors of the cells
    :param cell_width: Width of a character cell in pixels
    :param cell_height: Height of a character cell in pixels
    """
    width = snapshot.columns * cell_width
    height = snapshot.lines * cell_height
    image = Image.new('RGB', (width, height), palette.background)
    draw = ImageDraw.Draw(image)

    for row_number, row in enumerate(snapshot.buffer):
        y = row_number * cell_height
        for column, cell in enumerate(row):
            if cell.background_color != 'background':
                x = column * cell_width
                draw.rectangle((x, y, x + cell_width - 1, y + cell_height - 1),
                               fill=palette.resolve(cell.background_color))

    for row_number, row in enumerate(snapshot.buffer):
        y = row_number * cell_height
        for column, cell in enumerate(row):
            if not cell.text:
                # Right half of a wide character
                continue
            x = column * cell_width
            color = palette.resolve(cell.color)
            span = cell_width
            if not cell.text.isspace():
                glyph = glyph_cache.get(cell.text, cell.bold, cell.italics)
                glyph_width = min(glyph.width, width - x)
                glyph_height = min(glyph.height, height - y)
                if (glyph_width, glyph_height) != glyph.size:
                    glyph = glyph.crop((0, 0, glyph_width, glyph_height))
                image.paste(color, (x, y, x + glyph_width, y + glyph_height), glyph)
                span = glyph_width

            if cell.underscore:
                draw.line((x, y + cell_height - 2, x + span - 1, y + cell_height - 2),
                          fill=color)
            if cell.strikethrough:
                draw.line((x, y + cell_height // 2, x + span - 1, y + cell_height // 2),
                          fill=color)

    return PixelFrame(snapshot.index, snapshot.time, image)
