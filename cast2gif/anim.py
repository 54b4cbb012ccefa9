"""Conversion of a recorded terminal session to an animation

`render_animation` wires the components of a conversion together:

    Session (asciicast) -> TerminalState -> sample_frames (term)
        -> OrderedPipeline (pipeline) running render_frame (raster)
        -> encoder (encoders)

The session is read and validated entirely before the encoder is created so
that a malformed recording never produces any output.
"""
import functools
import logging
from collections import namedtuple

from cast2gif import asciicast, config, encoders, palette, pipeline, raster, term

logger = logging.getLogger(__name__)

ConversionResult = namedtuple('ConversionResult', ['frame_count', 'output_path',
                                                   'width', 'height'])
ConversionResult.__doc__ = 'Outcome of a conversion (output_path is None for empty sessions)'


def _frame_duration(interval):
    return max(1, int(round(interval * 1000)))


def render_animation(cast_filename, output_path, settings=None, default_theme=None,
                     still=False, progress=None, glyph_renderer=None, on_pipeline=None):
    """Convert an asciicast recording to an animation and return a
    ConversionResult

    :param cast_filename: Path of the recording in asciicast v1 or v2 format
    :param output_path: Path of the animation. Its extension selects the
    output format (.gif, .png, .svg). If `still` is True, directory where
    frames are saved as PNG files.
    :param settings: RenderSettings (defaults are used if None)
    :param default_theme: Theme used if neither `settings` nor the recording
    define one
    :param progress: Callable receiving pipeline.Progress instances
    :param glyph_renderer: Glyph renderer used instead of loading the fonts
    named in `settings`
    :param on_pipeline: Callable receiving the OrderedPipeline before it
    starts, for instance to keep a handle used to cancel it

    Raise MalformedSession, ConfigurationError, ColorError, RenderError,
    EncodeError or ConversionCancelled. Nothing is written to `output_path`
    when an exception is raised.
    """
    if settings is None:
        settings = config.RenderSettings()
    config.validate_settings(settings)

    session = asciicast.Session(cast_filename, settings.idle_time_limit)
    columns, lines = config.validate_geometry(session.columns, session.lines)
    event_count, duration = session.validate()
    if not event_count:
        logger.info('No output event in {}, nothing to render'.format(cast_filename))
        return ConversionResult(0, None, 0, 0)

    theme = settings.theme or session.header.theme or default_theme
    colors = palette.Palette.from_theme(theme)
    if glyph_renderer is None:
        glyph_renderer = raster.FontGlyphRenderer(settings.font, settings.font_size,
                                                  settings.bold_font, settings.italic_font,
                                                  settings.bold_italic_font)
    glyph_cache = raster.GlyphCache(glyph_renderer)
    cell_width, cell_height = glyph_cache.cell_width, glyph_cache.cell_height
    width, height = columns * cell_width, lines * cell_height

    expected_frames = term.frame_count(duration, settings.sampling_interval)
    logger.info('Rendering {} frames of {}x{} pixels from {} ({} events, {:.2f}s)'
                .format(expected_frames, width, height, cast_filename, event_count,
                        duration))

    sink = encoders.encoder_for_path(output_path, width, height,
                                     _frame_duration(settings.sampling_interval),
                                     settings.loop_delay, still)
    render = functools.partial(raster.render_frame, glyph_cache=glyph_cache,
                               palette=colors, cell_width=cell_width,
                               cell_height=cell_height)
    frame_pipeline = pipeline.OrderedPipeline(render, sink,
                                              workers=settings.workers,
                                              slack=settings.slack,
                                              validate=colors.validate_snapshot,
                                              progress=progress)
    if on_pipeline is not None:
        on_pipeline(frame_pipeline)

    state = term.TerminalState(columns, lines)
    snapshots = term.sample_frames(state, session.events(),
                                   settings.sampling_interval, duration)
    try:
        frame_count = frame_pipeline.run(snapshots)
        sink.finish()
    except BaseException:
        sink.abort()
        raise
    finally:
        snapshots.close()

    logger.debug('Glyph cache: {} glyphs, {} placeholders'
                 .format(len(glyph_cache), glyph_cache.placeholders))
    return ConversionResult(frame_count, output_path, width, height)
