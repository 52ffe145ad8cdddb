# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import deque
from typing import Dict, List, Optional, Sequence, Set

from ..config.models import HostSpec
from ..errors import ConfigError

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx, stamp


class CyclicDependencyError(ConfigError):
    pass


def dependencies(host: HostSpec, targeted: Set[str]) -> Set[str]:
    """
    Hosts that must reach Done before *host* starts.

    Only targeted hosts count: a bootstrap database outside the selection
    is assumed to be running already.
    """
    if host.bootstrap_host and host.bootstrap_host in targeted:
        return {host.bootstrap_host}
    return set()


def plan(
    hosts: Sequence[HostSpec],
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> List[HostSpec]:
    """
    Stable topological sort of the targeted hosts: the bootstrap database
    first, then every host that joins it, ties broken by description order.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(cluster="-")
    try:
        by_name: Dict[str, HostSpec] = {h.name: h for h in hosts}
        position = {h.name: i for i, h in enumerate(hosts)}
        targeted = set(by_name)
        graph: Dict[str, Set[str]] = {h.name: dependencies(h, targeted) for h in hosts}
        indeg: Dict[str, int] = {n: len(deps) for n, deps in graph.items()}

        queue = deque(sorted((n for n, deg in indeg.items() if deg == 0), key=position.get))
        order: List[HostSpec] = []

        while queue:
            n = queue.popleft()
            order.append(by_name[n])
            for m, deps in graph.items():
                if n in deps:
                    indeg[m] -= 1
                    if indeg[m] == 0:
                        queue.append(m)
                        queue = deque(sorted(queue, key=position.get))  # deterministic

        if len(order) != len(hosts):
            raise CyclicDependencyError("cyclic bootstrap dependency among hosts", stage="plan")

        if bus:
            bus.emit(PlanComputed(order=[h.name for h in order], **stamp(ctx)))
        return order

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **stamp(ctx)))
        raise
