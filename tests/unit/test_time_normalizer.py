"""
時刻正規化テスト
"""

import pytest

from fieldjob_sync.layers.data_processing.time_normalizer import normalize_time, to_minutes


class TestNormalizeTime:
    """入力ゆれの吸収"""

    @pytest.mark.parametrize("raw, expected", [
        ("9:00", "09:00"),
        ("09:00", "09:00"),
        ("7:5", "07:05"),
        ("9:0", "09:00"),
        ("7", "07:00"),
        ("13", "13:00"),
        ("900", "09:00"),
        ("1700", "17:00"),
        (" 14:30 ", "14:30"),
        (8, "08:00"),
    ])
    def test_accepted_formats(self, raw, expected):
        assert normalize_time(raw) == expected

    @pytest.mark.parametrize("raw", ["25:00", "12:60", "abc", "9.30", "", None, "99999"])
    def test_rejected_values(self, raw):
        assert normalize_time(raw) is None

    def test_midnight_is_valid(self):
        assert normalize_time("0:00") == "00:00"

    def test_to_minutes(self):
        assert to_minutes("13:30") == 810
