import pytest

from sltmon.forms import parse_int_list, parse_nullable_number, parse_positive_int


class TestParseNullableNumber:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2.5", 2.5),
            (" 42 ", 42.0),
            (3, 3.0),
            (0, 0.0),
            ("-1.25", -1.25),
            ("1e3", 1000.0),
        ],
    )
    def test_parses(self, value, expected):
        assert parse_nullable_number(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "abc", "12GB", "nan", "inf", float("nan"), True, [], {}])
    def test_rejects(self, value):
        assert parse_nullable_number(value) is None

    def test_huge_integer_is_rejected(self):
        assert parse_nullable_number(10**400) is None
        assert parse_nullable_number("1" + "0" * 400) is None


class TestParsePositiveInt:
    @pytest.mark.parametrize(
        "params, expected",
        [
            ({"days": "3"}, 3),
            ({"days": "2.9"}, 2),
            ({"days": "0"}, 7),
            ({"days": "-4"}, 7),
            ({"days": "abc"}, 7),
            ({"days": "inf"}, 7),
            ({}, 7),
        ],
    )
    def test_defaults(self, params, expected):
        assert parse_positive_int(params, "days", 7) == expected

    def test_maximum_clamps(self):
        assert parse_positive_int({"days": "1000000"}, "days", 7, maximum=3650) == 3650
        assert parse_positive_int({"days": "30"}, "days", 7, maximum=3650) == 30


class TestParseIntList:
    def test_string_and_bounds(self):
        assert parse_int_list("29, 59 61 x 29", minimum=0, maximum=59) == [29, 59]

    def test_list(self):
        assert parse_int_list([0, "30"]) == [0, 30]

    def test_none(self):
        assert parse_int_list(None) == []
