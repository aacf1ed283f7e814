"""Tests for upload log window planning."""

from datetime import datetime, timedelta, timezone

import pytest

from log_window import TimeWindow, floor_to_bucket, log_resource_for, plan_log_files
from replay_config import ReplayConfig


UTC = timezone.utc


def _dt(*args):
    return datetime(*args, tzinfo=UTC)


@pytest.fixture
def cfg():
    return ReplayConfig(logs_url="https://www.gentool.net/data/zh/logs/")


class TestTimeWindow:
    def test_naive_datetimes_are_utc(self):
        w = TimeWindow(datetime(2024, 5, 1, 12, 0), datetime(2024, 5, 1, 13, 0))
        assert w.start.tzinfo is not None
        assert w.start == _dt(2024, 5, 1, 12, 0)

    def test_other_timezones_converted(self):
        plus2 = timezone(timedelta(hours=2))
        w = TimeWindow(datetime(2024, 5, 1, 14, 0, tzinfo=plus2), _dt(2024, 5, 1, 13, 0))
        assert w.start == _dt(2024, 5, 1, 12, 0)

    def test_sub_second_precision_dropped(self):
        w = TimeWindow(_dt(2024, 5, 1, 12, 0, 0, 999999), _dt(2024, 5, 1, 12, 0, 5, 1))
        assert w.start.microsecond == 0
        assert w.end.microsecond == 0

    def test_start_after_end_rejected(self):
        with pytest.raises(ValueError):
            TimeWindow(_dt(2024, 5, 1, 13, 0), _dt(2024, 5, 1, 12, 0))

    def test_hours_back(self):
        now = _dt(2024, 5, 1, 12, 0)
        w = TimeWindow.hours_back(2, now=now)
        assert w.end == now
        assert w.start == _dt(2024, 5, 1, 10, 0)

    def test_hours_back_fractional(self):
        w = TimeWindow.hours_back(0.5, now=_dt(2024, 5, 1, 12, 0))
        assert w.start == _dt(2024, 5, 1, 11, 30)

    @pytest.mark.parametrize("hours", [0, -1])
    def test_hours_back_requires_positive(self, hours):
        with pytest.raises(ValueError):
            TimeWindow.hours_back(hours)

    def test_contains_is_inclusive(self):
        w = TimeWindow(_dt(2024, 5, 1, 12, 0), _dt(2024, 5, 1, 12, 20))
        assert w.contains(w.start)
        assert w.contains(w.end)
        assert not w.contains(w.end + timedelta(seconds=1))


class TestLogResource:
    def test_floor_to_bucket(self):
        assert floor_to_bucket(_dt(2024, 5, 1, 12, 7, 45), 10) == _dt(2024, 5, 1, 12, 0)
        assert floor_to_bucket(_dt(2024, 5, 1, 12, 10, 0), 10) == _dt(2024, 5, 1, 12, 10)
        assert floor_to_bucket(_dt(2024, 5, 1, 12, 59, 59), 10) == _dt(2024, 5, 1, 12, 50)

    def test_url_layout(self):
        ref = log_resource_for(_dt(2024, 5, 3, 9, 40), "https://www.gentool.net/data/zh/logs/")
        assert ref.filename == "uploads_20240503_094000.yaml.txt"
        assert ref.url == "https://www.gentool.net/data/zh/logs/2024_05/03/uploads_20240503_094000.yaml.txt"
        assert ref.date == "2024-05-03"


class TestPlanLogFiles:
    def test_window_spanning_three_buckets(self, cfg):
        w = TimeWindow(_dt(2024, 5, 1, 12, 0), _dt(2024, 5, 1, 12, 20))
        refs = plan_log_files(w, cfg)
        assert [r.bucket_start for r in refs] == [
            _dt(2024, 5, 1, 12, 0),
            _dt(2024, 5, 1, 12, 10),
            _dt(2024, 5, 1, 12, 20),
        ]

    def test_backs_up_to_bucket_before_start(self, cfg):
        w = TimeWindow(_dt(2024, 5, 1, 12, 7, 30), _dt(2024, 5, 1, 12, 33))
        refs = plan_log_files(w, cfg)
        assert refs[0].bucket_start == _dt(2024, 5, 1, 12, 0)
        assert refs[-1].bucket_start == _dt(2024, 5, 1, 12, 30)
        assert len(refs) == 4

    def test_zero_length_window(self, cfg):
        moment = _dt(2024, 5, 1, 12, 15, 0)
        refs = plan_log_files(TimeWindow(moment, moment), cfg)
        assert [r.bucket_start for r in refs] == [_dt(2024, 5, 1, 12, 10)]

    def test_crosses_month_boundary(self, cfg):
        w = TimeWindow(_dt(2024, 1, 31, 23, 55), _dt(2024, 2, 1, 0, 5))
        urls = [r.url for r in plan_log_files(w, cfg)]
        assert urls == [
            "https://www.gentool.net/data/zh/logs/2024_01/31/uploads_20240131_235000.yaml.txt",
            "https://www.gentool.net/data/zh/logs/2024_02/01/uploads_20240201_000000.yaml.txt",
        ]

    @pytest.mark.parametrize("start,end", [
        (_dt(2024, 5, 1, 0, 0), _dt(2024, 5, 1, 0, 0)),
        (_dt(2024, 5, 1, 11, 59, 59), _dt(2024, 5, 1, 12, 0, 1)),
        (_dt(2024, 5, 1, 3, 21, 9), _dt(2024, 5, 2, 7, 4, 33)),
        (_dt(2023, 12, 31, 23, 50, 1), _dt(2024, 1, 1, 0, 49, 59)),
    ])
    def test_bucket_properties(self, cfg, start, end):
        w = TimeWindow(start, end)
        refs = plan_log_files(w, cfg)
        starts = [r.bucket_start for r in refs]

        assert all(s.minute % 10 == 0 and s.second == 0 for s in starts)
        assert all(a < b for a, b in zip(starts, starts[1:]))
        assert all(b - a == timedelta(minutes=10) for a, b in zip(starts, starts[1:]))
        assert starts[0] <= w.start
        assert sum(1 for s in starts if s <= w.start) == 1
        assert starts[-1] <= w.end
        assert starts[-1] + timedelta(minutes=10) > w.end
