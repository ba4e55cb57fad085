"""
Test cases for the LineFramer in classes.py
"""

import unittest

from rcrelay.classes import MAX_LINE_LENGTH, MAX_RECORD_LENGTH, FramingError, LineFramer

def collect(chunks, limit=MAX_RECORD_LENGTH):
    """
    Feeds the given chunks into a new framer, returning the records that come out (with
    FramingErrors given as the string 'ERROR') followed by the final partial record.
    """
    framer = LineFramer(limit)
    out = []
    for chunk in chunks:
        framer.feed(chunk)
        while True:
            try:
                record = framer.next_record()
            except FramingError:
                out.append('ERROR')
                continue
            if record is None:
                break
            out.append(record)
    out.append(framer.finish())
    return out

def split_everywhere(data):
    """Yields every way of cutting data into two chunks, plus one byte at a time."""
    for pos in range(len(data) + 1):
        yield [data[:pos], data[pos:]]
    yield [data[i:i+1] for i in range(len(data))]

class LineFramerTest(unittest.TestCase):

    def test_terminators(self):
        self.assertEqual(collect([b'PING :a\r\nPING :b\nPING :c\r']),
                         [b'PING :a', b'', b'PING :b', b'PING :c', None])

    def test_partial_record(self):
        framer = LineFramer()
        framer.feed(b'PING :ab')
        self.assertIsNone(framer.next_record())
        self.assertEqual(len(framer), 8)

        framer.feed(b'c\r\n')
        self.assertEqual(framer.next_record(), b'PING :abc')

    def test_finish(self):
        self.assertEqual(collect([b'PING :a\r\nPING :b']), [b'PING :a', b'', b'PING :b'])
        self.assertEqual(collect([b'PING :a\r\n']), [b'PING :a', b'', None])

        framer = LineFramer()
        framer.feed(b'leftover')
        self.assertEqual(framer.finish(), b'leftover')
        self.assertEqual(len(framer), 0)
        self.assertIsNone(framer.finish())

    def test_chunking_does_not_matter(self):
        data = b':nick!user@host PRIVMSG #chan :hello\r\nPING :x\n\r:a 376 b :end\r\npartial'
        expected = collect([data])
        self.assertEqual(expected[-1], b'partial')

        for chunks in split_everywhere(data):
            with self.subTest(chunks=chunks):
                self.assertEqual(collect(chunks), expected)

    def test_record_at_limit(self):
        record = b'x' * MAX_RECORD_LENGTH
        self.assertEqual(collect([record + b'\r\n']), [record, b'', None])
        self.assertEqual(collect([record]), [record])

    def test_overlong_record(self):
        record = b'x' * (MAX_RECORD_LENGTH + 1)
        self.assertEqual(collect([record + b'\nPING :ok\n']), ['ERROR', b'PING :ok', None])

    def test_overlong_record_chunking(self):
        data = b'PING :before\n' + b'y' * 1500 + b'\nPING :after\n'
        expected = ['ERROR', b'PING :after', None]

        for chunks in split_everywhere(data):
            with self.subTest(split=[len(chunk) for chunk in chunks][:3]):
                out = collect(chunks)
                self.assertEqual(out[0], b'PING :before')
                self.assertEqual(out[1:], expected)

    def test_overlong_unterminated_record(self):
        # It is dropped at end of stream as well.
        self.assertEqual(collect([b'z' * 600]), ['ERROR', None])

    def test_framing_error_details(self):
        framer = LineFramer()
        framer.feed(b'a' * 600 + b'\n')
        with self.assertRaises(FramingError) as cm:
            framer.next_record()
        self.assertEqual(cm.exception.length, 600)
        self.assertEqual(cm.exception.limit, MAX_LINE_LENGTH)
        self.assertIsNone(framer.next_record())

    def test_custom_limit(self):
        self.assertEqual(collect([b'abcdef\nabc\n'], limit=4), ['ERROR', b'abc', None])

if __name__ == '__main__':
    unittest.main()
