"""Command line interface of cast2gif"""

import argparse
import logging
import os
import sys
import tempfile

import cast2gif.anim
import cast2gif.config
from cast2gif.asciicast import MalformedSession
from cast2gif.encoders import EncodeError
from cast2gif.palette import ColorError
from cast2gif.pipeline import ConversionCancelled
from cast2gif.raster import RenderError

logger = logging.getLogger('cast2gif')

USAGE = """cast2gif input_file [output_path] [-i INTERVAL] [-t THEME] [-f FONT]
                [-S FONT_SIZE] [-w WORKERS] [-D DELAY] [-M IDLE_LIMIT] [-s] [-v] [-h]

Render an asciicast recording as an animated GIF, PNG or SVG
"""

CONVERSION_ERRORS = (MalformedSession, cast2gif.config.ConfigurationError, ColorError,
                     RenderError, EncodeError, ConversionCancelled)

PROGRESS_STEP = 50


def integral_duration_validation(duration):
    if duration.lower().endswith('ms'):
        duration = duration[:-len('ms')]

    if duration.isdigit():
        return int(duration)
    raise ValueError('duration must be a positive integer')


def positive_integer(value):
    if value.isdigit() and int(value) >= 1:
        return int(value)
    raise ValueError('value must be an integer greater than 0')


def idle_time_validation(value):
    seconds = float(value)
    if seconds <= 0:
        raise ValueError('idle time limit must be greater than 0')
    return seconds


def parse(args, themes, default_interval, default_loop_delay):
    """Parse command line arguments

    :param args: Arguments to parse
    :param themes: Names of the themes available
    :param default_interval: Default time between two frames in seconds
    :param default_loop_delay: Default duration of the pause between two
    consecutive loops of the animation in milliseconds
    :return: Parsed arguments
    """
    parser = argparse.ArgumentParser(prog='cast2gif', usage=USAGE)
    parser.add_argument(
        'input_file',
        help='recording of a terminal session in asciicast v1 or v2 format'
    )
    parser.add_argument(
        'output_path',
        nargs='?',
        help='optional filename of the animation. The extension of the file '
             'selects the output format (.gif, .png or .svg). If --still-frames '
             'is specified, output_path should be the path of the directory '
             'where still frames will be stored. If missing, a random path '
             'will be automatically generated.',
        metavar='output_path'
    )
    parser.add_argument(
        '-i', '--interval',
        type=cast2gif.config.validate_interval,
        metavar='INTERVAL',
        default=default_interval,
        help=('time between two frames in seconds, or in milliseconds with the '
              '"ms" suffix (default: {}s)'.format(default_interval))
    )
    parser.add_argument(
        '-t', '--theme',
        help='color theme used to render the terminal session ({}). Defaults to '
             'the theme of the recording if it has one'.format(', '.join(themes)),
        choices=themes,
        metavar='THEME'
    )
    parser.add_argument(
        '-f', '--font',
        help='TrueType font used to render the terminal session (file name or path)',
        metavar='FONT'
    )
    parser.add_argument(
        '-S', '--font-size',
        type=positive_integer,
        metavar='FONT_SIZE',
        help='font size in pixels'
    )
    parser.add_argument(
        '-w', '--workers',
        type=positive_integer,
        metavar='WORKERS',
        help='number of rasterization threads (default: one per CPU)'
    )
    parser.add_argument(
        '-D', '--loop-delay',
        type=integral_duration_validation,
        metavar='DELAY',
        default=default_loop_delay,
        help=(('duration in milliseconds of the pause between two consecutive '
               'loops of the animation (default: {}ms)')
              .format(default_loop_delay))
    )
    parser.add_argument(
        '-M', '--idle-time-limit',
        type=idle_time_validation,
        metavar='IDLE_LIMIT',
        help='maximum duration in seconds of a pause in the recording'
    )
    parser.add_argument(
        '-s', '--still-frames',
        help='output still frames in PNG format instead of an animation',
        action='store_true'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='increase log messages verbosity'
    )
    return parser.parse_args(args)


class ProgressLogger:
    """Log the number of frames encoded every `step` frames"""
    def __init__(self, step=PROGRESS_STEP):
        self.step = step
        self.last_logged = 0

    def __call__(self, progress):
        if progress.encoded >= self.last_logged + self.step:
            self.last_logged = progress.encoded
            logger.debug('{} frames encoded ({} rasterized, {} submitted)'
                         .format(progress.encoded, progress.rasterized, progress.submitted))


def _output_path(output_path, still):
    """Return output_path, or a random path in the temporary directory if it
    is None

    Only the name is reserved: the file or directory is removed right away
    and is created again by the encoder once the recording is validated."""
    if output_path is not None:
        return output_path

    if still:
        path = tempfile.mkdtemp(prefix='cast2gif_')
        os.rmdir(path)
        return path
    fd, path = tempfile.mkstemp(prefix='cast2gif_', suffix='.gif')
    os.close(fd)
    os.remove(path)
    return path


def main(args=None):
    if args is None:
        args = sys.argv

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_formatter = logging.Formatter('%(message)s')
    console_handler.setFormatter(console_formatter)
    logger.handlers = [console_handler]
    logger.setLevel(logging.INFO)

    try:
        configuration = cast2gif.config.init_read_conf()
    except cast2gif.config.ConfigurationError as exc:
        logger.error('Error: {}'.format(exc))
        sys.exit(1)

    themes = sorted(name for name in configuration if name != 'global')
    global_options = configuration['GLOBAL']
    args = parse(args[1:], themes,
                 global_options.get('sampling_interval',
                                    cast2gif.config.DEFAULT_SAMPLING_INTERVAL),
                 global_options.get('loop_delay', cast2gif.config.DEFAULT_LOOP_DELAY))

    if args.verbose:
        _, log_filename = tempfile.mkstemp(prefix='cast2gif_', suffix='.log')
        file_handler = logging.FileHandler(filename=log_filename, mode='w')
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        file_handler.setFormatter(file_formatter)
        logger.handlers.append(file_handler)
        console_handler.setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
        logger.info('Logging to {}'.format(log_filename))

    exit_code = 0
    try:
        settings = cast2gif.config.settings_from_conf(
            configuration,
            theme_name=args.theme,
            sampling_interval=args.interval,
            font=args.font,
            font_size=args.font_size,
            workers=args.workers,
            loop_delay=args.loop_delay,
            idle_time_limit=args.idle_time_limit,
        )
        output_path = _output_path(args.output_path, args.still_frames)

        logger.info('Rendering started')
        result = cast2gif.anim.render_animation(
            args.input_file,
            output_path,
            settings,
            default_theme=cast2gif.config.fallback_theme(configuration),
            still=args.still_frames,
            progress=ProgressLogger(),
        )
        if result.output_path is None:
            logger.info('Rendering ended, the recording is empty')
        elif args.still_frames:
            logger.info('Rendering ended, {} frames are located at {}'
                        .format(result.frame_count, result.output_path))
        else:
            logger.info('Rendering ended, animation ({} frames) is {}'
                        .format(result.frame_count, result.output_path))
    except CONVERSION_ERRORS as exc:
        logger.error('Error: {}'.format(exc))
        exit_code = 1
    except KeyboardInterrupt:
        logger.error('Error: conversion interrupted')
        exit_code = 1
    finally:
        for handler in logger.handlers:
            handler.close()

    if exit_code:
        sys.exit(exit_code)
