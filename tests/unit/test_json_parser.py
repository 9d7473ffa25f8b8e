"""Unit tests for lenient JSON parsing of model output."""

from billtracker.utils.json_parser import parse_json_safely


class TestParseJsonSafely:
    """Tests for parse_json_safely."""

    def test_plain_object(self):
        assert parse_json_safely('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        """Test that markdown code fences are stripped."""
        assert parse_json_safely('```json\n{"a": 1}\n```') == {"a": 1}
        assert parse_json_safely('```\n[1, 2]\n```') == [1, 2]

    def test_surrounding_prose(self):
        """Test that a JSON value embedded in prose is recovered."""
        text = 'Here is the bill:\n{"invoiceNumber": "B1-1"}\nLet me know if you need more.'
        assert parse_json_safely(text) == {"invoiceNumber": "B1-1"}

    def test_unparseable(self):
        assert parse_json_safely("no json here") is None
        assert parse_json_safely('{"a": ') is None

    def test_empty(self):
        assert parse_json_safely("") is None
        assert parse_json_safely(None) is None
