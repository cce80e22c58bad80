from datetime import datetime, timedelta, timezone

from cycles import as_utc, current_cycle, cycle_key, had_prior_cycle, in_cycle, next_cycle, previous_cycle
from schemas import Account


def _account(created_at):
    return Account(id="a1", name="Test", created_at=created_at)


def test_current_cycle_is_calendar_month_inclusive(now):
    start, end = current_cycle(now)
    assert start == datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert end == datetime(2024, 5, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_previous_cycle_crosses_year_boundary():
    start, end = previous_cycle(datetime(2024, 1, 3, tzinfo=timezone.utc))
    assert start == datetime(2023, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2023, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_next_cycle_crosses_year_boundary():
    start, _ = next_cycle(datetime(2023, 12, 31, 23, 0, tzinfo=timezone.utc))
    assert start == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_leap_february_end():
    _, end = current_cycle(datetime(2024, 2, 10, tzinfo=timezone.utc))
    assert end.day == 29


def test_naive_datetimes_are_utc():
    naive = datetime(2024, 5, 15, 12, 0)
    assert as_utc(naive) == datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
    assert current_cycle(naive) == current_cycle(as_utc(naive))


def test_aware_datetimes_are_converted():
    manila = timezone(timedelta(hours=8))
    # 1 June 02:00 in UTC+8 is still 31 May in UTC
    moment = datetime(2024, 6, 1, 2, 0, tzinfo=manila)
    assert cycle_key(moment) == "2024-05"
    assert in_cycle(moment, current_cycle(datetime(2024, 5, 15, tzinfo=timezone.utc)))


def test_had_prior_cycle_for_old_account(now):
    assert had_prior_cycle(_account(now - timedelta(days=90)), now)


def test_no_prior_cycle_for_young_account(now):
    assert not had_prior_cycle(_account(now - timedelta(days=10)), now)


def test_created_at_previous_cycle_start_is_not_prior(now):
    start, _ = previous_cycle(now)
    assert not had_prior_cycle(_account(start), now)
    assert had_prior_cycle(_account(start - timedelta(microseconds=1)), now)


def test_cycle_key():
    assert cycle_key(datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc)) == "2024-03"
