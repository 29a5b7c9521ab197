from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from exam_platform.services.time_window import as_utc, hard_end_time, is_expired, remaining_seconds


def _at(hour, minute=0, second=0):
    return datetime(2026, 5, 4, hour, minute, second, tzinfo=timezone.utc)


def _window(start, end, duration_minutes, started_at):
    exam = SimpleNamespace(start_time=start, end_time=end, duration_minutes=duration_minutes)
    attempt = SimpleNamespace(started_at=started_at)
    return exam, attempt


def test_exam_end_caps_duration():
    exam, attempt = _window(_at(9), _at(10), 90, _at(9, 10))
    assert hard_end_time(exam, attempt) == _at(10)


def test_duration_caps_exam_end():
    exam, attempt = _window(_at(9), _at(12), 30, _at(9, 10))
    assert hard_end_time(exam, attempt) == _at(9, 40)


def test_hard_end_never_exceeds_either_bound():
    for started in (_at(9), _at(9, 30), _at(9, 59)):
        for duration in (1, 30, 60, 240):
            exam, attempt = _window(_at(9), _at(10), duration, started)
            end = hard_end_time(exam, attempt)
            assert end <= exam.end_time
            assert end <= started + timedelta(minutes=duration)


def test_naive_datetimes_are_read_as_utc():
    exam, attempt = _window(_at(9), datetime(2026, 5, 4, 10), 90, datetime(2026, 5, 4, 9, 10))
    assert hard_end_time(exam, attempt) == _at(10)
    assert as_utc(datetime(2026, 5, 4, 10)).tzinfo == timezone.utc


def test_expiry_is_strictly_after_hard_end():
    exam, attempt = _window(_at(9), _at(10), 60, _at(9))
    assert not is_expired(exam, attempt, _at(10))
    assert is_expired(exam, attempt, _at(10, 0, 1))


def test_remaining_seconds_floors_and_never_goes_negative():
    exam, attempt = _window(_at(9), _at(10), 60, _at(9))
    assert remaining_seconds(exam, attempt, _at(9, 59, 0)) == 60
    assert remaining_seconds(exam, attempt, _at(9, 59, 0) + timedelta(milliseconds=400)) == 59
    assert remaining_seconds(exam, attempt, _at(11)) == 0
