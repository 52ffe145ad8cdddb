import dataclasses

import pytest

from lnfleet.config.loader import load_description
from lnfleet.config.resolver import resolve
from lnfleet.errors import InvalidFieldError, ScheduleOverlapError
from lnfleet.upgrade.schedule import (
    ActivationWindow,
    activation_windows,
    check_windows,
    parse_calendar,
    upgrade_waves,
    window_for,
)


def _databases(write_description, n):
    body = "".join(
        f'\n[hosts.db-{i:02d}]\nrole = "database"\nipv4_address = "10.0.0.{20 + i}"\n'
        for i in range(n)
    )
    return resolve(load_description(write_description(body)))


@pytest.mark.parametrize("n", [1, 3, 7])
def test_database_windows_never_overlap(write_description, n):
    hosts = _databases(write_description, n)
    windows = activation_windows(hosts)
    check_windows(windows)
    starts = [w.start for w in windows]
    assert starts == [120 + 10 * i for i in range(n)]


def test_window_calendar(fleet):
    assert window_for(fleet[0]).calendar == "*-*-* 02:00:00"
    assert window_for(fleet[2]).calendar == "*-*-* 02:20:00"


def test_explicit_schedule_overrides_stagger(fleet):
    h = dataclasses.replace(fleet[1], upgrade_schedule="*-*-* 4:05:00")
    assert window_for(h).start == 4 * 60 + 5


def test_overlapping_database_schedules_are_rejected(fleet):
    db0, db1 = fleet[1], dataclasses.replace(fleet[2], upgrade_schedule="*-*-* 2:15:00")
    with pytest.raises(ScheduleOverlapError) as exc:
        check_windows(activation_windows([db0, db1]))
    assert exc.value.host == "db-01"


def test_application_may_share_a_window_with_a_database(fleet):
    kld = dataclasses.replace(fleet[0], upgrade_schedule="*-*-* 2:10:00")
    check_windows(activation_windows([kld, fleet[1]]))


def test_windows_wrap_around_midnight():
    late = ActivationWindow(host="a", role="database", start=23 * 60 + 55)
    early = ActivationWindow(host="b", role="database", start=3)
    assert late.overlaps(early)
    assert early.overlaps(late)


def test_unparsable_database_schedule_is_an_error(fleet):
    db = dataclasses.replace(fleet[1], upgrade_schedule="Mon *-*-* 02:00:00")
    with pytest.raises(InvalidFieldError):
        activation_windows([db])


def test_parse_calendar():
    assert parse_calendar("*-*-* 2:30:00") == 150
    assert parse_calendar("*-*-* 24:00:00") is None
    assert parse_calendar("daily") is None


def test_waves_hold_one_host_per_role(fleet):
    waves = upgrade_waves(fleet)
    assert [[h.name for h in w] for w in waves] == [["kld-00", "db-00"], ["db-01"]]
