"""Encoders turning ordered PixelFrames into output files

Every encoder follows the same protocol:
    - `submit(frame)` must be called with frame indices 0, 1, 2... in order,
    from a single thread
    - `finish()` writes the output and closes the encoder
    - `abort()` discards the partial output; it never raises

Animated outputs are written to a temporary file next to the destination and
moved into place by `finish`, so an interrupted conversion never leaves a
file that looks complete.
"""
import abc
import base64
import io
import logging
import os
import tempfile

from lxml import etree
from PIL import Image

from cast2gif.config import ConfigurationError

logger = logging.getLogger(__name__)

SVG_NS = 'http://www.w3.org/2000/svg'
XLINK_NS = 'http://www.w3.org/1999/xlink'
NSMAP = {None: SVG_NS, 'xlink': XLINK_NS}

STILL_FRAME_FORMAT = 'cast2gif_{:05}.png'


class EncodeError(Exception):
    """The output could not be produced"""


class FrameEncoder(abc.ABC):
    """Base class of all encoders

    :param width: Width of the frames in pixels
    :param height: Height of the frames in pixels
    :param frame_duration: Duration of a frame in milliseconds
    :param loop_delay: Additional duration of the last frame in milliseconds
    """
    def __init__(self, width, height, frame_duration, loop_delay=0):
        self.width = width
        self.height = height
        self.frame_duration = frame_duration
        self.loop_delay = loop_delay
        self.frame_count = 0
        self.closed = False

    def submit(self, frame):
        if self.closed:
            raise EncodeError('Encoder is closed')
        if frame.index != self.frame_count:
            raise EncodeError('Frame #{} submitted out of order (expected #{})'
                              .format(frame.index, self.frame_count))
        if frame.image.size != (self.width, self.height):
            raise EncodeError('Frame #{} has size {}x{} (expected {}x{})'
                              .format(frame.index, *frame.image.size,
                                      self.width, self.height))
        try:
            self._submit(frame)
        except OSError as exc:
            raise EncodeError('Unable to encode frame #{}: {}'
                              .format(frame.index, exc)) from exc
        self.frame_count += 1

    def finish(self):
        if self.closed:
            raise EncodeError('Encoder is closed')
        if not self.frame_count:
            raise EncodeError('No frame to encode')
        try:
            self._finish()
        except OSError as exc:
            self.abort()
            raise EncodeError('Unable to write output: {}'.format(exc)) from exc
        self.closed = True

    def abort(self):
        if not self.closed:
            self.closed = True
            self._abort()

    @abc.abstractmethod
    def _submit(self, frame):
        raise NotImplementedError

    @abc.abstractmethod
    def _finish(self):
        raise NotImplementedError

    def _abort(self):
        pass


def _write_atomically(path, write):
    """Call `write` with a binary file object and move the file to `path`
    once `write` returns"""
    directory = os.path.dirname(os.path.abspath(path))
    _, suffix = os.path.splitext(path)
    fd, temp_path = tempfile.mkstemp(prefix='.cast2gif_', suffix=suffix, dir=directory)
    try:
        with os.fdopen(fd, 'wb') as output_file:
            write(output_file)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.remove(temp_path)
        except OSError:
            pass
        raise


class _AnimationEncoder(FrameEncoder):
    """Encoder writing all frames at once with Pillow when finishing

    Consecutive identical frames are merged into a single frame lasting
    longer.

    Every distinct frame stays in memory until `finish` writes the file, so
    memory grows with the number of distinct frames of the recording. This
    is the price of writing the output in one step. StillFramesEncoder is
    the streaming alternative for long recordings.
    """
    format = None

    def __init__(self, path, width, height, frame_duration, loop_delay=0):
        super().__init__(width, height, frame_duration, loop_delay)
        self.path = path
        self._images = []
        self._durations = []
        self._last_bytes = None

    def _convert(self, image):
        return image

    def _submit(self, frame):
        image_bytes = frame.image.tobytes()
        if image_bytes == self._last_bytes:
            self._durations[-1] += self.frame_duration
            return
        self._last_bytes = image_bytes
        self._images.append(self._convert(frame.image))
        self._durations.append(self.frame_duration)

    def _finish(self):
        durations = list(self._durations)
        durations[-1] += self.loop_delay
        first, others = self._images[0], self._images[1:]

        def write(output_file):
            first.save(output_file, format=self.format, save_all=True,
                       append_images=others, duration=durations, loop=0)

        _write_atomically(self.path, write)
        logger.debug('{} frames written to {} ({} distinct)'
                     .format(self.frame_count, self.path, len(self._images)))
        self._release()

    def _abort(self):
        self._release()

    def _release(self):
        self._images = []
        self._durations = []
        self._last_bytes = None


class GifEncoder(_AnimationEncoder):
    """Animated GIF

    Frames are reduced to 256 colors as soon as they are submitted so that
    buffered frames use one byte per pixel.
    """
    format = 'GIF'

    def _convert(self, image):
        return image.convert('P', palette=Image.Palette.ADAPTIVE, colors=256)


class ApngEncoder(_AnimationEncoder):
    """Animated PNG"""
    format = 'PNG'

    def _convert(self, image):
        return image.copy()


class SvgEncoder(FrameEncoder):
    """SVG animation made of embedded PNG images

    All distinct frames are stacked vertically in a group which is translated
    by a CSS animation so that only one of them is visible at a time.
    """
    def __init__(self, path, width, height, frame_duration, loop_delay=0):
        super().__init__(width, height, frame_duration, loop_delay)
        self.path = path
        self._root = etree.Element('{{{}}}svg'.format(SVG_NS), nsmap=NSMAP, attrib={
            'width': str(width),
            'height': str(height),
            'viewBox': '0 0 {} {}'.format(width, height),
        })
        self._style = etree.SubElement(self._root, '{{{}}}style'.format(SVG_NS))
        self._view = etree.SubElement(self._root, '{{{}}}g'.format(SVG_NS),
                                      attrib={'id': 'screen_view'})
        # Start time in milliseconds and vertical offset of each distinct frame
        self._timings = []
        self._last_bytes = None

    def _submit(self, frame):
        image_bytes = frame.image.tobytes()
        time = self.frame_count * self.frame_duration
        if image_bytes == self._last_bytes:
            return
        self._last_bytes = image_bytes

        with io.BytesIO() as png:
            frame.image.save(png, format='PNG', optimize=True)
            data = base64.b64encode(png.getvalue()).decode('ascii')

        offset = len(self._timings) * self.height
        etree.SubElement(self._view, '{{{}}}image'.format(SVG_NS), attrib={
            'x': '0',
            'y': str(offset),
            'width': str(self.width),
            'height': str(self.height),
            '{{{}}}href'.format(XLINK_NS): 'data:image/png;base64,{}'.format(data),
        })
        self._timings.append((time, -offset))

    def _animation_css(self):
        duration = self.frame_count * self.frame_duration + self.loop_delay
        transform_format = '{time:.3f}%{{transform:translateY({offset}px)}}'
        transforms = [transform_format.format(time=100.0 * time / duration, offset=offset)
                      for time, offset in self._timings]
        transforms.append(transform_format.format(time=100, offset=self._timings[-1][1]))
        return """
            svg {{ overflow: hidden; }}

            @keyframes roll {{
                {transforms}
            }}

            #screen_view {{
                animation-duration: {duration}ms;
                animation-iteration-count: infinite;
                animation-name: roll;
                animation-timing-function: steps(1, end);
                animation-fill-mode: forwards;
            }}
        """.format(duration=duration, transforms=os.linesep.join(transforms))

    def _finish(self):
        self._style.text = etree.CDATA(self._animation_css())
        document = etree.tostring(self._root, xml_declaration=True, encoding='utf-8')
        _write_atomically(self.path, lambda output_file: output_file.write(document))
        logger.debug('{} frames written to {} ({} distinct)'
                     .format(self.frame_count, self.path, len(self._timings)))


class StillFramesEncoder(FrameEncoder):
    """One PNG file per frame, written as soon as the frame is submitted

    The directory is created with the first frame if it does not exist yet,
    and removed again by `abort`. Its parent directory must exist.
    """
    def __init__(self, directory, width, height, frame_duration, loop_delay=0):
        super().__init__(width, height, frame_duration, loop_delay)
        self.directory = directory
        self.paths = []
        self._created_directory = False

    def _make_directory(self):
        try:
            os.mkdir(self.directory)
        except FileExistsError:
            if not os.path.isdir(self.directory):
                raise
        else:
            self._created_directory = True

    def _submit(self, frame):
        if frame.index == 0:
            self._make_directory()
        path = os.path.join(self.directory, STILL_FRAME_FORMAT.format(frame.index))
        frame.image.save(path, format='PNG')
        self.paths.append(path)

    def _finish(self):
        pass

    def _abort(self):
        for path in self.paths:
            try:
                os.remove(path)
            except OSError as exc:
                logger.debug('Unable to remove {}: {}'.format(path, exc))
        self.paths = []
        if self._created_directory:
            try:
                os.rmdir(self.directory)
            except OSError as exc:
                logger.debug('Unable to remove {}: {}'.format(self.directory, exc))


ENCODERS = {
    '.gif': GifEncoder,
    '.png': ApngEncoder,
    '.apng': ApngEncoder,
    '.svg': SvgEncoder,
}


def encoder_for_path(path, width, height, frame_duration, loop_delay=0, still=False):
    """Return the encoder suited to the output path

    If `still` is True, `path` is a directory where each frame is saved as
    a PNG file. Otherwise, the output format depends on the extension of
    `path`. Raise ConfigurationError for unknown extensions."""
    if still:
        return StillFramesEncoder(path, width, height, frame_duration, loop_delay)

    _, extension = os.path.splitext(path)
    try:
        encoder_class = ENCODERS[extension.lower()]
    except KeyError:
        raise ConfigurationError('Unsupported output format "{}" (expected one of {})'
                                 .format(extension, ', '.join(sorted(ENCODERS)))) from None
    return encoder_class(path, width, height, frame_duration, loop_delay)
