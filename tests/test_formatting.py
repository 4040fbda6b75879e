from datetime import date, datetime, timezone

import pytest

from finance_tracker.formatting import format_timestamp, parse_timestamp, to_number


def test_format_timestamp_pads_early_years():
    assert format_timestamp(date(999, 1, 1)) == "0999-01-01T00:00:00.000Z"
    assert format_timestamp("0050-06-30") == "0050-06-30T00:00:00.000Z"
    assert format_timestamp(format_timestamp("0999-01-01")) == "0999-01-01T00:00:00.000Z"


def test_format_timestamp_converts_to_utc_milliseconds():
    assert format_timestamp("2024-01-15T10:30:00.123456+02:00") == "2024-01-15T08:30:00.123Z"
    assert format_timestamp(datetime(2024, 1, 15, 8, 30)) == "2024-01-15T08:30:00.000Z"
    assert format_timestamp(None) is None


def test_parse_timestamp_reads_offset_after_space():
    expected = datetime(2024, 1, 14, 17, 0, tzinfo=timezone.utc)

    assert parse_timestamp("2024-01-15T00:00:00 07:00") == expected
    assert parse_timestamp("2024-01-15T00:00:00+07:00") == expected
    assert parse_timestamp("2024-01-15 10:30") == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["", "yesterday", "2024-13-01", "0001-01-01T00:00:00+07:00"])
def test_parse_timestamp_rejects_bad_input(value):
    with pytest.raises(ValueError):
        parse_timestamp(value)


def test_to_number():
    assert to_number(None) == 0
    assert to_number(3) == 3
    assert to_number("12.50") == 12.5
