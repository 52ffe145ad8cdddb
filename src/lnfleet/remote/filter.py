# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from ..config.models import HostSpec
from ..errors import ConfigError


def parse_host_filter(raw: Optional[str]) -> List[str]:
    """'a, b,,c' -> ['a', 'b', 'c']"""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def filter_hosts(hosts: Sequence[HostSpec], names: Iterable[str]) -> List[HostSpec]:
    """
    Select hosts by name, keeping description order.
    An empty selection means every host.
    """
    wanted = list(names)
    if not wanted:
        return list(hosts)
    known = {h.name for h in hosts}
    unknown = [n for n in wanted if n not in known]
    if unknown:
        raise ConfigError(
            f"unknown host(s) {', '.join(unknown)}; known hosts: {', '.join(sorted(known))}",
            stage="filter",
        )
    selected = set(wanted)
    return [h for h in hosts if h.name in selected]
