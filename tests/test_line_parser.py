import pytest
from PIL import Image

from fakes import FakeTextRecognizer, observation
from ticketscan.game_catalog import GAME_CONSTRAINTS
from ticketscan.line_parser import LineParser, is_numeric_line, parse_tokens, tokens_to_row
from ticketscan.models import EMPTY, UNREADABLE, TicketRow

MEGA_MILLIONS = GAME_CONSTRAINTS["us_mega_millions"]
UK_LOTTO = GAME_CONSTRAINTS["uk_lotto"]


@pytest.mark.parametrize("text,expected", [
    ("05 12 33 61 69 20", True),
    ("05,12|33", True),
    ("O5 I2 33", True),
    ("OSB", False),
    ("A 05 12 33", False),
    ("QP 5.00", False),
    ("", False),
])
def test_is_numeric_line(text, expected):
    assert is_numeric_line(text) is expected


def test_parse_tokens_splits_on_separators_and_corrects():
    assert parse_tokens("O7, 12|S  4") == [7, 12, 5, 4]


class TestTokensToRow:
    def test_five_plus_special(self):
        row = tokens_to_row([5, 12, 33, 61, 69, 20], MEGA_MILLIONS)
        assert row == TicketRow((5, 12, 33, 61, 69), 20)

    def test_short_rows_are_zero_padded(self):
        row = tokens_to_row([5, 12], MEGA_MILLIONS)
        assert row.numbers == (5, 12, EMPTY, EMPTY, EMPTY)
        assert row.special == EMPTY

    def test_out_of_range_tokens_are_unreadable(self):
        row = tokens_to_row([5, 12, 80, 61, 69, 30], MEGA_MILLIONS)
        assert row.numbers == (5, 12, UNREADABLE, 61, 69)
        assert row.special == UNREADABLE

    def test_game_without_special_ignores_sixth_token(self):
        assert tokens_to_row([1, 2, 3, 4, 5, 6], UK_LOTTO).special == EMPTY

    def test_no_tokens_is_no_row(self):
        assert tokens_to_row([], MEGA_MILLIONS) is None


class TestLineParser:
    def test_read_lines_filters_and_uses_line_mode(self, settings):
        recognizer = FakeTextRecognizer([
            observation("05 12 33 61 69 20", 0.5, 0.3, width=0.6),
            observation("MEGA MILLIONS", 0.5, 0.1, width=0.6),
        ])

        lines = LineParser(recognizer, settings).read_lines(Image.new("L", (100, 100), 255))

        assert [line.text for line in lines] == ["05 12 33 61 69 20"]
        options = recognizer.calls[0]
        assert options.line_mode is True
        assert options.min_text_height == settings.line_min_text_height

    def test_parse_rows_merges_fragments_on_one_row(self, settings):
        lines = [
            observation("61 69 20", 0.7, 0.305, width=0.3),
            observation("05 12 33", 0.3, 0.3, width=0.3),
            observation("1 2 3 4 5 6", 0.5, 0.5, width=0.6),
            observation(", ,", 0.5, 0.7),
        ]

        rows = LineParser(FakeTextRecognizer(), settings).parse_rows(lines, MEGA_MILLIONS)

        assert rows == [
            TicketRow((5, 12, 33, 61, 69), 20),
            TicketRow((1, 2, 3, 4, 5), 6),
        ]

    def test_read_rows_end_to_end(self, settings):
        recognizer = FakeTextRecognizer([
            observation("O5 I2 33 6I 69 2O", 0.5, 0.3, width=0.6),
            observation("7 8", 0.5, 0.6, width=0.6),
        ])

        rows = LineParser(recognizer, settings).read_rows(Image.new("L", (100, 100), 255), MEGA_MILLIONS)

        assert rows == [
            TicketRow((5, 12, 33, 61, 69), 20),
            TicketRow((7, 8, 0, 0, 0), 0),
        ]
