# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/install/readiness.py

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..config.models import HostSpec
from ..errors import ReadinessTimeoutError, RemoteError
from ..observers.dispatcher import EventBus
from ..observers.events import ReadinessProbed, new_ctx, stamp
from ..remote.channel import RemoteChannel
from ..settings import OrchestratorSettings
from ..utils.retry import backoff_delays

log = logging.getLogger("lnfleet")

DB_CERTS = "/var/lib/secrets/database"
APP_DB_CERTS = "/var/lib/secrets/app/database"
DB_PORT = 26257


@dataclass(frozen=True)
class Probe:
    label: str
    command: str
    expect: Optional[str] = None     # substring stdout must contain

    def passed(self, rc: int, out: str) -> bool:
        return rc == 0 and (self.expect is None or self.expect in out)


def probes_for(host: HostSpec) -> List[Probe]:
    if host.role == "database":
        return [
            Probe(
                "quorum membership",
                f"cockroach node status --certs-dir={DB_CERTS} "
                f"--host={shlex.quote(host.name)}:{DB_PORT} --format=tsv",
                expect=f"{host.name}:{DB_PORT}",
            )
        ]

    probes = [
        Probe("chain indexer", "systemctl is-active --quiet bitcoind.service"),
        Probe("application", "systemctl is-active --quiet kld.service"),
    ]
    if host.database_peers:
        target = host.database_peers[0].name
        probes.append(Probe(
            "database client",
            f"cockroach sql --certs-dir={APP_DB_CERTS} --user=kld "
            f"--host={shlex.quote(target)}:{DB_PORT} -e 'SELECT 1'",
        ))
    return probes


def needs_init(host: HostSpec) -> bool:
    """The first database of a multi-node cluster initialises the quorum."""
    return host.role == "database" and host.bootstrap_host is None and len(host.join_list) > 1


def init_cluster(
    channel: RemoteChannel,
    host: HostSpec,
    settings: OrchestratorSettings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    cmd = f"cockroach init --certs-dir={DB_CERTS} --host={shlex.quote(host.name)}:{DB_PORT}"
    deadline = time.monotonic() + settings.readiness_timeout
    delays = backoff_delays(settings.backoff_initial, settings.backoff_max)
    while True:
        rc, out, err = channel.run(cmd, check=False, timeout=settings.probe_timeout, stage="readiness")
        text = out + err
        if rc == 0 or "already been initialized" in text:
            log.info("[%s] database cluster initialised", host.name)
            return
        if time.monotonic() >= deadline:
            raise ReadinessTimeoutError(
                f"cockroach init did not succeed: {text.strip()[-200:]}",
                host=host.name, stage="readiness",
            )
        sleep(next(delays))


def wait_ready(
    channel: RemoteChannel,
    host: HostSpec,
    settings: OrchestratorSettings,
    *,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Poll the role's probes until all pass.

    Each probe call is bounded by settings.probe_timeout, the whole wait by
    settings.readiness_timeout; delays between rounds back off
    exponentially. Returns the number of rounds it took.
    """
    probes = probes_for(host)
    ctx = run_ctx or new_ctx(cluster="-")
    deadline = clock() + settings.readiness_timeout
    delays = backoff_delays(settings.backoff_initial, settings.backoff_max)
    attempt = 0

    while True:
        attempt += 1
        failing: List[str] = []
        for probe in probes:
            try:
                rc, out, _ = channel.run(probe.command, check=False,
                                         timeout=settings.probe_timeout, stage="readiness")
            except RemoteError as e:
                failing.append(f"{probe.label} ({e.message})")
                continue
            if not probe.passed(rc, out):
                failing.append(probe.label)

        ok = not failing
        if bus:
            bus.emit(ReadinessProbed(host=host.name, attempt=attempt, ok=ok,
                                     detail=", ".join(failing) or None, **stamp(ctx)))
        if ok:
            log.info("[%s] ready after %d probe round(s)", host.name, attempt)
            return attempt

        remaining = deadline - clock()
        if remaining <= 0:
            raise ReadinessTimeoutError(
                f"not ready after {int(settings.readiness_timeout)}s, failing: {', '.join(failing)}",
                host=host.name, stage="readiness",
            )
        log.debug("[%s] not ready yet (%s)", host.name, ", ".join(failing))
        sleep(min(next(delays), remaining))
