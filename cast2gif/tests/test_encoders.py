import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from lxml import etree
from PIL import Image

from cast2gif import encoders
from cast2gif.config import ConfigurationError
from cast2gif.encoders import EncodeError
from cast2gif.raster import PixelFrame

WIDTH = 8
HEIGHT = 6


def frame(index, color):
    return PixelFrame(index, index * 0.1, Image.new('RGB', (WIDTH, HEIGHT), color))


FRAMES = [
    frame(0, (255, 0, 0)),
    frame(1, (0, 255, 0)),
    frame(2, (0, 255, 0)),
    frame(3, (0, 0, 255)),
]


class TestEncoders(unittest.TestCase):
    def setUp(self):
        self.directory = tempfile.mkdtemp(prefix='cast2gif_')

    def tearDown(self):
        shutil.rmtree(self.directory)

    def path(self, name):
        return os.path.join(self.directory, name)

    def test_gif(self):
        path = self.path('animation.gif')
        encoder = encoders.encoder_for_path(path, WIDTH, HEIGHT, 100, loop_delay=1000)
        self.assertIsInstance(encoder, encoders.GifEncoder)
        for pixel_frame in FRAMES:
            encoder.submit(pixel_frame)
            self.assertFalse(os.path.exists(path))
        encoder.finish()

        with Image.open(path) as image:
            self.assertEqual(image.format, 'GIF')
            self.assertEqual(image.size, (WIDTH, HEIGHT))
            # Frames 1 and 2 are identical and merged
            self.assertEqual(image.n_frames, 3)
            durations = []
            for index in range(image.n_frames):
                image.seek(index)
                durations.append(image.info['duration'])
                self.assertEqual(image.convert('RGB').getpixel((0, 0)),
                                 [(255, 0, 0), (0, 255, 0), (0, 0, 255)][index])
        self.assertEqual(durations, [100, 200, 1100])
        self.assertEqual(os.listdir(self.directory), ['animation.gif'])

    def test_apng(self):
        path = self.path('animation.png')
        encoder = encoders.encoder_for_path(path, WIDTH, HEIGHT, 100)
        self.assertIsInstance(encoder, encoders.ApngEncoder)
        for pixel_frame in FRAMES:
            encoder.submit(pixel_frame)
        encoder.finish()

        with Image.open(path) as image:
            self.assertEqual(image.format, 'PNG')
            self.assertEqual(image.n_frames, 3)

    def test_svg(self):
        path = self.path('animation.svg')
        encoder = encoders.encoder_for_path(path, WIDTH, HEIGHT, 100, loop_delay=500)
        self.assertIsInstance(encoder, encoders.SvgEncoder)
        for pixel_frame in FRAMES:
            encoder.submit(pixel_frame)
        encoder.finish()

        tree = etree.parse(path)
        root = tree.getroot()
        self.assertEqual(root.tag, '{{{}}}svg'.format(encoders.SVG_NS))
        images = root.findall('.//{{{}}}image'.format(encoders.SVG_NS))
        self.assertEqual(len(images), 3)
        style = root.find('{{{}}}style'.format(encoders.SVG_NS))
        self.assertIn('animation-duration: 900ms', style.text)
        self.assertIn('translateY(-{}px)'.format(2 * HEIGHT), style.text)

    def test_still_frames(self):
        encoder = encoders.encoder_for_path(self.directory, WIDTH, HEIGHT, 100, still=True)
        self.assertIsInstance(encoder, encoders.StillFramesEncoder)
        for pixel_frame in FRAMES:
            encoder.submit(pixel_frame)
        encoder.finish()
        expected = ['cast2gif_{:05}.png'.format(i) for i in range(len(FRAMES))]
        self.assertEqual(sorted(os.listdir(self.directory)), expected)

    def test_still_frames_abort(self):
        encoder = encoders.StillFramesEncoder(self.directory, WIDTH, HEIGHT, 100)
        encoder.submit(FRAMES[0])
        encoder.submit(FRAMES[1])
        encoder.abort()
        self.assertEqual(os.listdir(self.directory), [])

    def test_still_frames_directory(self):
        frames_directory = self.path('frames')
        with self.subTest(case='created with the first frame'):
            encoder = encoders.StillFramesEncoder(frames_directory, WIDTH, HEIGHT, 100)
            self.assertFalse(os.path.exists(frames_directory))
            encoder.submit(FRAMES[0])
            self.assertTrue(os.path.isdir(frames_directory))

        with self.subTest(case='removed on abort'):
            encoder.abort()
            self.assertFalse(os.path.exists(frames_directory))

        with self.subTest(case='missing parent directory'):
            encoder = encoders.StillFramesEncoder(self.path('missing/frames'), WIDTH, HEIGHT,
                                                  100)
            with self.assertRaises(EncodeError):
                encoder.submit(FRAMES[0])

        with self.subTest(case='path is a file'):
            with open(frames_directory, 'w'):
                pass
            encoder = encoders.StillFramesEncoder(frames_directory, WIDTH, HEIGHT, 100)
            with self.assertRaises(EncodeError):
                encoder.submit(FRAMES[0])
            encoder.abort()
            self.assertTrue(os.path.isfile(frames_directory))

    def test_unknown_extension(self):
        with self.assertRaises(ConfigurationError):
            encoders.encoder_for_path(self.path('animation.mp4'), WIDTH, HEIGHT, 100)

    def test_out_of_order(self):
        encoder = encoders.GifEncoder(self.path('animation.gif'), WIDTH, HEIGHT, 100)
        encoder.submit(FRAMES[0])
        with self.assertRaises(EncodeError):
            encoder.submit(FRAMES[2])
        with self.assertRaises(EncodeError):
            encoder.submit(FRAMES[0])

    def test_wrong_size(self):
        encoder = encoders.GifEncoder(self.path('animation.gif'), WIDTH, HEIGHT, 100)
        large_frame = PixelFrame(0, 0, Image.new('RGB', (WIDTH + 1, HEIGHT)))
        with self.assertRaises(EncodeError):
            encoder.submit(large_frame)

    def test_no_frame(self):
        encoder = encoders.GifEncoder(self.path('animation.gif'), WIDTH, HEIGHT, 100)
        with self.assertRaises(EncodeError):
            encoder.finish()

    def test_abort(self):
        path = self.path('animation.gif')
        encoder = encoders.GifEncoder(path, WIDTH, HEIGHT, 100)
        encoder.submit(FRAMES[0])
        encoder.abort()
        encoder.abort()
        self.assertEqual(os.listdir(self.directory), [])
        with self.assertRaises(EncodeError):
            encoder.submit(FRAMES[1])
        with self.assertRaises(EncodeError):
            encoder.finish()

    def test_write_failure(self):
        path = self.path('animation.gif')
        encoder = encoders.GifEncoder(path, WIDTH, HEIGHT, 100)
        encoder.submit(FRAMES[0])
        with patch('cast2gif.encoders.os.replace', side_effect=OSError('read-only')):
            with self.assertRaises(EncodeError):
                encoder.finish()
        self.assertEqual(os.listdir(self.directory), [])

    def test_missing_directory(self):
        encoder = encoders.GifEncoder(self.path('missing/animation.gif'), WIDTH, HEIGHT, 100)
        encoder.submit(FRAMES[0])
        with self.assertRaises(EncodeError):
            encoder.finish()
