import json
import os
import tempfile
import unittest

from cast2gif.asciicast import AsciiCastError, AsciiCastV2Event, AsciiCastV2Header, \
    AsciiCastV2Theme, MalformedSession, Session, is_color, parse_record, read_records

PALETTE_8 = '#000000:#111111:#222222:#333333:#444444:#555555:#666666:#777777'


def write_cast(lines, suffix='.cast'):
    fd, filename = tempfile.mkstemp(prefix='cast2gif_', suffix=suffix)
    with os.fdopen(fd, 'w', encoding='utf-8') as cast_file:
        cast_file.write('\n'.join(lines))
    return filename


class TestAsciicast(unittest.TestCase):
    valid_lines = [
        ('{"version": 2, "width": 212, "height": 53}',
         AsciiCastV2Header(2, 212, 53)),
        ('{"version": 2, "width": 212, "height": 53, "timestamp": 1234567, "idle_time_limit": 2}',
         AsciiCastV2Header(2, 212, 53, idle_time_limit=2)),
        ('{"version": 2, "width": 212, "height": 53, "theme": {"fg": "#000000", '
         '"bg": "#AAAAAA", "palette": "' + PALETTE_8 + '"}}',
         AsciiCastV2Header(2, 212, 53, AsciiCastV2Theme('#000000', '#AAAAAA', PALETTE_8))),
        ('[0.010303, "o", "\\u001b[1;31mnico \\u001b[0;34m~\\u001b[0m"]',
         AsciiCastV2Event(0.010303, 'o', '\u001b[1;31mnico \u001b[0;34m~\u001b[0m')),
        ('[1.146397, "o", "❤ ☀ ☆ ☂ ☻ ♞ ☯ ☭ ☢ € →"]',
         AsciiCastV2Event(1.146397, 'o', '❤ ☀ ☆ ☂ ☻ ♞ ☯ ☭ ☢ € →')),
        ('[2, "i", "\\r\\n"]',
         AsciiCastV2Event(2, 'i', '\r\n')),
    ]

    invalid_lines = [
        ('invalid version type', '{"version": "x", "width": 212, "height": 53}'),
        ('invalid width', '{"version": 2, "width": "x", "height": 53}'),
        ('boolean width', '{"version": 2, "width": true, "height": 53}'),
        ('missing height', '{"version": 2, "width": 80}'),
        ('zero height', '{"version": 2, "width": 80, "height": 0}'),
        ('version 1', '{"version": 1, "width": 80, "height": 24}'),
        ('incomplete theme', '{"version": 2, "width": 80, "height": 24, '
                             '"theme": {"fg": "#000000"}}'),
        ('theme is not an object', '{"version": 2, "width": 80, "height": 24, "theme": 3}'),
        ('invalid time', '["x", "o", "ls"]'),
        ('invalid event type', '[2.0, 123, "ls"]'),
        ('missing data', '[2.0, "o"]'),
        ('not JSON', '[2.0, "o", "ls"'),
        ('unknown record', '"some text"'),
    ]

    def test_parse_record(self):
        for line, record in self.valid_lines:
            with self.subTest(case=line):
                self.assertEqual(parse_record(line), record)

    def test_parse_record_errors(self):
        for case, line in self.invalid_lines:
            with self.subTest(case=case):
                with self.assertRaises(AsciiCastError):
                    parse_record(line)

    def test_is_color(self):
        for color in ('#000000', '#AbCdEf'):
            with self.subTest(color=color):
                self.assertTrue(is_color(color))
        for color in ('000000', '#00000', '#00000g', None, 0):
            with self.subTest(color=color):
                self.assertFalse(is_color(color))

    def test_AsciiCastV2Theme(self):
        palette_16 = ':'.join('#{0:02x}{0:02x}{0:02x}'.format(i) for i in range(16))
        with self.subTest(case='16 colors'):
            theme = AsciiCastV2Theme('#000000', '#ffffff', palette_16)
            self.assertEqual(len(theme.colors), 16)

        with self.subTest(case='8 colors'):
            theme = AsciiCastV2Theme('#000000', '#ffffff', PALETTE_8)
            self.assertEqual(len(theme.colors), 8)

        with self.subTest(case='extra colors are ignored'):
            theme = AsciiCastV2Theme('#000000', '#ffffff', PALETTE_8 + ':#888888:#999999')
            self.assertEqual(theme.palette, PALETTE_8)

        with self.subTest(case='too few colors'):
            with self.assertRaises(AsciiCastError):
                AsciiCastV2Theme('#000000', '#ffffff', '#000000:#111111')

        with self.subTest(case='invalid foreground'):
            with self.assertRaises(AsciiCastError):
                AsciiCastV2Theme('black', '#ffffff', palette_16)

    def test_read_records(self):
        with self.subTest(case='asciicast v2'):
            filename = write_cast(['{"version": 2, "width": 80, "height": 24}', '',
                                   '[0.5, "o", "a"]', '[1.0, "i", "b"]'])
            records = list(read_records(filename))
            os.remove(filename)
            self.assertEqual(records, [
                AsciiCastV2Header(2, 80, 24, None),
                AsciiCastV2Event(0.5, 'o', 'a', None),
                AsciiCastV2Event(1.0, 'i', 'b', None),
            ])

        with self.subTest(case='asciicast v1'):
            v1_data = {
                'version': 1,
                'width': 80,
                'height': 24,
                'duration': 1.5,
                'command': '/bin/zsh',
                'title': '',
                'env': {},
                'stdout': [[0.5, 'a'], [1.0, 'b']],
            }
            filename = write_cast([json.dumps(v1_data, indent=2)])
            records = list(read_records(filename))
            os.remove(filename)
            self.assertEqual(records, [
                AsciiCastV2Header(2, 80, 24, None),
                AsciiCastV2Event(0.5, 'o', 'a', None),
                AsciiCastV2Event(1.5, 'o', 'b', None),
            ])

        with self.subTest(case='invalid record line number'):
            filename = write_cast(['{"version": 2, "width": 80, "height": 24}',
                                   '[0.5, "o", "a"]', '[0.5, "o"'])
            with self.assertRaisesRegex(AsciiCastError, 'line 3'):
                list(read_records(filename))
            os.remove(filename)

        with self.subTest(case='second header'):
            filename = write_cast(['{"version": 2, "width": 80, "height": 24}',
                                   '{"version": 2, "width": 80, "height": 24}'])
            with self.assertRaises(AsciiCastError):
                list(read_records(filename))
            os.remove(filename)


class TestSession(unittest.TestCase):
    header = '{"version": 2, "width": 10, "height": 2}'

    def test_missing_file(self):
        with self.assertRaises(MalformedSession):
            Session('/non-existent/session.cast')

    def test_empty_file(self):
        filename = write_cast([])
        with self.assertRaises(MalformedSession):
            Session(filename)
        os.remove(filename)

    def test_invalid_header(self):
        filename = write_cast(['{"version": 2, "width": -1, "height": 2}'])
        with self.assertRaises(MalformedSession):
            Session(filename)
        os.remove(filename)

    def test_geometry(self):
        filename = write_cast([self.header])
        session = Session(filename)
        os.remove(filename)
        self.assertEqual((session.columns, session.lines), (10, 2))

    def test_events_restartable(self):
        filename = write_cast([self.header, '[0.1, "o", "a"]', '[0.2, "o", "b"]'])
        session = Session(filename)
        first = list(session.events())
        second = list(session.events())
        os.remove(filename)
        self.assertEqual(first, second)
        self.assertEqual([e.event_data for e in first], ['a', 'b'])

    def test_events_out_of_order(self):
        filename = write_cast([self.header, '[0.2, "o", "a"]', '[0.1, "o", "b"]'])
        session = Session(filename)
        with self.assertRaises(MalformedSession):
            list(session.events())
        os.remove(filename)

    def test_negative_timestamp(self):
        filename = write_cast([self.header, '[-0.2, "o", "a"]'])
        session = Session(filename)
        with self.assertRaises(MalformedSession):
            session.validate()
        os.remove(filename)

    def test_malformed_event(self):
        filename = write_cast([self.header, '[0.1, "o", "a"]', 'not json'])
        session = Session(filename)
        with self.assertRaisesRegex(MalformedSession, 'line 3'):
            session.validate()
        os.remove(filename)

    def test_validate(self):
        filename = write_cast([self.header, '[0.1, "o", "a"]', '[0.5, "i", "b"]',
                               '[1.25, "o", "c"]', '[2.0, "m", ""]'])
        session = Session(filename)
        os.remove(filename)
        self.assertEqual(session.validate(), (2, 1.25))

    def test_validate_no_output(self):
        filename = write_cast([self.header, '[0.5, "i", "b"]'])
        session = Session(filename)
        os.remove(filename)
        self.assertEqual(session.validate(), (0, 0))

    def test_idle_time_limit(self):
        lines = [self.header, '[0.5, "o", "a"]', '[10.5, "o", "b"]', '[11.0, "o", "c"]']
        filename = write_cast(lines)
        with self.subTest(case='no limit'):
            times = [e.time for e in Session(filename).events()]
            self.assertEqual(times, [0.5, 10.5, 11.0])

        with self.subTest(case='limit of 1 second'):
            times = [e.time for e in Session(filename, idle_time_limit=1).events()]
            self.assertEqual(times, [0.5, 1.5, 2.0])

        with self.subTest(case='invalid limit'):
            with self.assertRaises(MalformedSession):
                Session(filename, idle_time_limit=-1)
        os.remove(filename)

    def test_idle_time_limit_from_header(self):
        filename = write_cast(['{"version": 2, "width": 10, "height": 2, "idle_time_limit": 2}',
                               '[0, "o", "a"]', '[5, "o", "b"]'])
        session = Session(filename)
        times = [e.time for e in session.events()]
        os.remove(filename)
        self.assertEqual(session.idle_time_limit, 2)
        self.assertEqual(times, [0, 2])
