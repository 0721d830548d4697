import unittest

from openenc.utils.s57_colours import Colour, parse_colours


class TestColour(unittest.TestCase):
    """Unit tests for the S-57 COLOUR codes."""

    def test_values_match_attribute_catalogue(self):
        self.assertEqual(Colour.WHITE, 1)
        self.assertEqual(Colour.RED, 3)
        self.assertEqual(Colour.GREEN, 4)
        self.assertEqual(Colour.YELLOW, 6)
        self.assertEqual(Colour.PINK, 13)
        self.assertEqual(len(Colour), 13)

    def test_from_value(self):
        self.assertIs(Colour.from_value(3), Colour.RED)
        self.assertIs(Colour.from_value('4'), Colour.GREEN)
        self.assertIs(Colour.from_value(' 6 '), Colour.YELLOW)
        self.assertIs(Colour.from_value(1.0), Colour.WHITE)

    def test_from_value_unknown(self):
        self.assertIsNone(Colour.from_value(0))
        self.assertIsNone(Colour.from_value(14))
        self.assertIsNone(Colour.from_value('red'))
        self.assertIsNone(Colour.from_value(None))


class TestParseColours(unittest.TestCase):
    """COLOUR arrives in several shapes depending on the GDAL version and options."""

    def test_int(self):
        self.assertEqual(parse_colours({'COLOUR': 6}), [Colour.YELLOW])

    def test_int_list_keeps_order(self):
        self.assertEqual(parse_colours({'COLOUR': [3, 1]}), [Colour.RED, Colour.WHITE])

    def test_comma_separated_string(self):
        self.assertEqual(parse_colours({'COLOUR': '1,3,4'}), [Colour.WHITE, Colour.RED, Colour.GREEN])

    def test_string_list(self):
        self.assertEqual(parse_colours({'COLOUR': ['4', '1']}), [Colour.GREEN, Colour.WHITE])

    def test_unknown_codes_dropped(self):
        self.assertEqual(parse_colours({'COLOUR': [3, 99, 'x']}), [Colour.RED])

    def test_missing(self):
        self.assertEqual(parse_colours({}), [])
        self.assertEqual(parse_colours({'COLOUR': None}), [])
        self.assertEqual(parse_colours({'COLOUR': ''}), [])


if __name__ == '__main__':
    unittest.main()
