# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/upgrade/schedule.py

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, List, Optional, Sequence

from ..config.models import ROLES, HostSpec
from ..errors import InvalidFieldError, ScheduleOverlapError

log = logging.getLogger("lnfleet")

BASE_MINUTE = 2 * 60          # 02:00 UTC
WINDOW_MINUTES = 10           # assumed upper bound for one host's upgrade
DAY = 24 * 60

_CALENDAR_RE = re.compile(r"^\*-\*-\*\s+(\d{1,2}):(\d{2})(?::(\d{2}))?$")


@dataclass(frozen=True)
class ActivationWindow:
    host: str
    role: str
    start: int                # minutes after midnight UTC
    duration: int = WINDOW_MINUTES

    @property
    def calendar(self) -> str:
        """systemd OnCalendar expression for the host-local upgrade timer."""
        return f"*-*-* {self.start // 60:02d}:{self.start % 60:02d}:00"

    def overlaps(self, other: "ActivationWindow") -> bool:
        # windows live on a 24h clock and may wrap past midnight
        return ((other.start - self.start) % DAY < self.duration
                or (self.start - other.start) % DAY < other.duration)


def parse_calendar(expr: str) -> Optional[int]:
    """'*-*-* 2:30:00' -> 150; None for expressions we cannot place on the clock."""
    m = _CALENDAR_RE.match(expr.strip())
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour * 60 + minute


def window_for(host: HostSpec, *, window_minutes: int = WINDOW_MINUTES) -> Optional[ActivationWindow]:
    if host.upgrade_schedule:
        start = parse_calendar(host.upgrade_schedule)
        if start is None:
            return None
    else:
        start = (BASE_MINUTE + host.upgrade_order * window_minutes) % DAY
    return ActivationWindow(host=host.name, role=host.role, start=start, duration=window_minutes)


def activation_windows(hosts: Sequence[HostSpec]) -> List[ActivationWindow]:
    """
    Windows for every host whose schedule can be placed on the clock.
    Hosts of a quorum-bearing role must have one.
    """
    windows: List[ActivationWindow] = []
    for h in hosts:
        w = window_for(h)
        if w is None:
            if ROLES[h.role].quorum:
                raise InvalidFieldError(
                    f"upgrade_schedule {h.upgrade_schedule!r} must look like '*-*-* HH:MM:SS' "
                    "so its window can be checked against its peers",
                    host=h.name, stage="schedule",
                )
            log.warning("[%s] cannot place upgrade_schedule %r on the clock; not checked",
                        h.name, h.upgrade_schedule)
            continue
        windows.append(w)
    return windows


def check_windows(windows: Sequence[ActivationWindow]) -> None:
    """No two hosts of the same quorum-bearing role may share an activation window."""
    for a, b in combinations(windows, 2):
        if a.role == b.role and ROLES[a.role].quorum and a.overlaps(b):
            raise ScheduleOverlapError(
                f"upgrade windows of '{a.host}' ({a.calendar}) and '{b.host}' ({b.calendar}) "
                f"overlap; {a.role} hosts must upgrade one at a time",
                host=b.host, stage="schedule",
            )


def upgrade_waves(hosts: Sequence[HostSpec]) -> List[List[HostSpec]]:
    """
    Group hosts for an operator-triggered update.

    The k-th host (by upgrade order) of every role lands in wave k, so a
    wave never holds two hosts of the same role. Waves run one after the
    other; hosts inside a wave may run in parallel.
    """
    rank: Dict[str, int] = {}
    waves: List[List[HostSpec]] = []
    for h in sorted(hosts, key=lambda x: x.upgrade_order):
        k = rank.get(h.role, 0)
        rank[h.role] = k + 1
        while len(waves) <= k:
            waves.append([])
        waves[k].append(h)
    return waves
