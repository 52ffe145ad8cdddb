# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/upgrade/orchestrator.py

from __future__ import annotations

import difflib
import logging
import time
from typing import Callable, List, Optional, Sequence, Set

from ..config.models import ROLES, HostSpec
from ..config.resolver import validate_host
from ..errors import LnfleetError, RemoteError, RollbackUnavailableError
from ..image.compiler import DESCRIPTOR_PATH, SystemImageCompiler, descriptor_json
from ..install.readiness import wait_ready
from ..observers.events import (
    GenerationChanged,
    RunSummary,
    SecretsPushed,
    UpgradeWaveStarted,
    WindowOverrun,
    stamp,
)
from ..operation import ChannelFactory, FleetOperation
from ..remote.channel import RemoteChannel
from ..report import FAILED, HostOutcome, RunReport
from ..secrets.provisioner import SecretProvisioner
from ..utils.execution import ExecutionContext
from .generations import (
    booted_current,
    collect_garbage,
    current_generation,
    prior_generation,
    switch_to,
)
from .handoff import KernelHandoff
from .schedule import activation_windows, check_windows, upgrade_waves, window_for

log = logging.getLogger("lnfleet")

VALIDATE = "Validate"
DIFF = "Diff"
DRY_ACTIVATE = "DryActivate"
SECRET_PUSH = "SecretPush"
ACTIVATE = "Activate"
HANDOFF = "Handoff"
RECONNECT = "Reconnect"
VERIFY = "Verify"
READINESS_WAIT = "ReadinessWait"
CLEANUP = "Cleanup"
SWITCH = "Switch"

BOOT_ID = "cat /proc/sys/kernel/random/boot_id"


def descriptor_diff(host: HostSpec, deployed: Optional[str]) -> str:
    """Unified diff from the descriptor on the host to the one compiled now."""
    fresh = descriptor_json(host)
    old = deployed if deployed is not None else ""
    lines = difflib.unified_diff(
        old.splitlines(keepends=True),
        fresh.splitlines(keepends=True),
        fromfile=f"{host.name}:{DESCRIPTOR_PATH}",
        tofile=f"{host.name}:compiled",
    )
    return "".join(lines)


class UpgradeOrchestrator(FleetOperation):
    """
    Moves already-installed hosts between system generations.

    dry_update() shows what would change without touching the generation,
    update() activates a new generation wave by wave, rollback() returns to
    the newest retained older generation.
    """

    def __init__(
        self,
        compiler: SystemImageCompiler,
        secrets: SecretProvisioner,
        fleet: Sequence[HostSpec],
        *,
        ctx: Optional[ExecutionContext] = None,
        observers: Optional[List] = None,
        run_ctx: Optional[dict] = None,
        channel_factory: Optional[ChannelFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(ctx=ctx, observers=observers, run_ctx=run_ctx,
                         channel_factory=channel_factory, sleep=sleep)
        self.compiler = compiler
        self.secrets = secrets
        self.fleet = list(fleet)

    def _finish(self, report: RunReport) -> RunReport:
        self.bus.emit(RunSummary(operation=report.operation,
                                 ok=len(report.outcomes) - len(report.failed()),
                                 failed=len(report.failed()), **stamp(self.run_ctx)))
        log.info(report.summary())
        return report

    # ------------------------------------------------------------------
    # dry-update
    # ------------------------------------------------------------------

    def dry_update_host(self, host: HostSpec) -> HostOutcome:
        started = time.time()
        stage = VALIDATE
        try:
            stage = self._enter(host, VALIDATE)
            validate_host(host)
            ch = self._open(host)
            try:
                before = current_generation(ch)

                stage = self._enter(host, DIFF)
                deployed = ch.read_text(DESCRIPTOR_PATH)
                if deployed is None:
                    log.warning("[%s] %s not found on host", host.name, DESCRIPTOR_PATH)
                diff = descriptor_diff(host, deployed)

                stage = self._enter(host, DRY_ACTIVATE)
                self.compiler.dry_activate(host)

                after = current_generation(ch)
                if after != before:
                    raise RemoteError(
                        f"generation changed during dry-update ({before} -> {after})",
                        host=host.name, stage="dry-update",
                    )
            finally:
                self._release(ch)
            return self._done(host, stage, started, detail=diff or "descriptor unchanged")
        except Exception as e:
            if not isinstance(e, LnfleetError):
                log.debug("[%s] unexpected failure", host.name, exc_info=True)
            return self._failed(host, stage, e, started)

    def dry_update(self, targets: Sequence[HostSpec]) -> RunReport:
        self.operation = "dry-update"
        for host in targets:
            validate_host(host)
        self.compiler.prepare()
        report = RunReport(operation=self.operation)
        for outcome in self.run_parallel(targets, self.dry_update_host):
            report.add(outcome)
        return self._finish(report)

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------

    def _wait_rebooted(self, ch: RemoteChannel, host: HostSpec, boot_id: str) -> None:
        """Reconnect until the host reports a boot id different from *boot_id*."""
        timeout = self.ctx.settings.reboot_timeout
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RemoteError(f"host did not restart within {int(timeout)}s",
                                  host=host.name, stage="reconnect")
            ch.wait_reachable(remaining, stage="reconnect")
            rc, out, _ = ch.run(BOOT_ID, check=False, stage="reconnect")
            if rc == 0 and out.strip() and out.strip() != boot_id:
                return
            ch.close()
            self._sleep(self.ctx.settings.backoff_initial)

    def _check_window(self, host: HostSpec, started: float) -> None:
        window = window_for(host)
        if window is None:
            return
        window_s = window.duration * 60
        elapsed = int(time.time() - started)
        if elapsed > window_s:
            log.warning("[%s] update took %ds, longer than its %ds activation window",
                        host.name, elapsed, window_s)
            self.bus.emit(WindowOverrun(host=host.name, window_s=window_s, elapsed_s=elapsed,
                                        **stamp(self.run_ctx)))

    def update_host(self, host: HostSpec) -> HostOutcome:
        started = time.time()
        stage = VALIDATE
        try:
            stage = self._enter(host, VALIDATE)
            validate_host(host)
            self.secrets.ensure([host])
            bundle = self.secrets.bundle_for(host)

            ch = self._open(host)
            try:
                before = current_generation(ch)

                stage = self._enter(host, SECRET_PUSH)
                self.secrets.push(ch, bundle)
                self.bus.emit(SecretsPushed(host=host.name, files=len(bundle.files),
                                            **stamp(self.run_ctx)))

                stage = self._enter(host, ACTIVATE)
                self.compiler.switch(host, action="boot")
                staged = current_generation(ch)
                if staged == before and booted_current(ch):
                    log.info("[%s] generation %d is already current", host.name, before)
                    return self._done(host, stage, started, detail="already current")

                stage = self._enter(host, HANDOFF)
                boot_id = ch.output(BOOT_ID, stage="handoff")
                method = KernelHandoff(ch).perform()

                stage = self._enter(host, RECONNECT)
                ch.close()
                self._wait_rebooted(ch, host, boot_id)

                stage = self._enter(host, VERIFY)
                if not booted_current(ch):
                    raise RemoteError("running system is not the default generation after "
                                      f"{method}", host=host.name, stage="verify")
                after = current_generation(ch)
                if after <= before:
                    raise RemoteError(f"generation did not advance (still {after})",
                                      host=host.name, stage="verify")
                self.bus.emit(GenerationChanged(host=host.name, before=before, after=after,
                                                **stamp(self.run_ctx)))
                log.info("[%s] generation %d -> %d via %s", host.name, before, after, method)

                stage = self._enter(host, READINESS_WAIT)
                wait_ready(ch, host, self.ctx.settings, bus=self.bus, run_ctx=self.run_ctx,
                           sleep=self._sleep)

                stage = self._enter(host, CLEANUP)
                collect_garbage(ch, keep=(before, after))
            finally:
                self._release(ch)

            self._check_window(host, started)
            return self._done(host, stage, started, detail=f"generation {after}")
        except Exception as e:
            if not isinstance(e, LnfleetError):
                log.debug("[%s] unexpected failure", host.name, exc_info=True)
            return self._failed(host, stage, e, started)

    def _skipped(self, host: HostSpec, role: str) -> HostOutcome:
        return self._failed(
            host, VALIDATE,
            LnfleetError(f"not started: an earlier {role} host failed to update"),
            time.time(),
        )

    def _run_waves(self, targets: Sequence[HostSpec],
                   fn: Callable[[HostSpec], HostOutcome], report: RunReport) -> None:
        """
        Wave k holds the k-th host of every role. Once a host of a
        quorum-bearing role fails, its later peers are not started so the
        quorum never loses more than one member.
        """
        broken: Set[str] = set()
        for i, wave in enumerate(upgrade_waves(targets)):
            runnable: List[HostSpec] = []
            for host in wave:
                if host.role in broken:
                    report.add(self._skipped(host, host.role))
                else:
                    runnable.append(host)
            if not runnable:
                continue
            self.bus.emit(UpgradeWaveStarted(wave=i, hosts=[h.name for h in runnable],
                                             **stamp(self.run_ctx)))
            log.info("wave %d: %s", i, ", ".join(h.name for h in runnable))
            for host, outcome in zip(runnable, self.run_parallel(runnable, fn)):
                report.add(outcome)
                if outcome.status == FAILED and ROLES[host.role].quorum:
                    broken.add(host.role)

    def update(self, targets: Sequence[HostSpec]) -> RunReport:
        self.operation = "update"
        # whole-fleet check: a targeted host must not collide with an untargeted peer
        check_windows(activation_windows(self.fleet))
        for host in targets:
            validate_host(host)
        self.compiler.prepare()

        report = RunReport(operation=self.operation)
        self._run_waves(targets, self.update_host, report)
        return self._finish(report)

    # ------------------------------------------------------------------
    # rollback
    # ------------------------------------------------------------------

    def rollback_host(self, host: HostSpec) -> HostOutcome:
        started = time.time()
        stage = VALIDATE
        try:
            stage = self._enter(host, VALIDATE)
            ch = self._open(host)
            try:
                current = current_generation(ch)
                prior = prior_generation(ch)
                if prior is None:
                    raise RollbackUnavailableError(
                        f"no generation older than {current} is retained",
                        host=host.name, stage="rollback",
                    )

                stage = self._enter(host, SWITCH)
                switch_to(ch, prior)

                stage = self._enter(host, VERIFY)
                now = current_generation(ch)
                if now != prior:
                    raise RemoteError(f"expected generation {prior} after rollback, found {now}",
                                      host=host.name, stage="verify")
                self.bus.emit(GenerationChanged(host=host.name, before=current, after=now,
                                                **stamp(self.run_ctx)))

                stage = self._enter(host, READINESS_WAIT)
                wait_ready(ch, host, self.ctx.settings, bus=self.bus, run_ctx=self.run_ctx,
                           sleep=self._sleep)
            finally:
                self._release(ch)
            return self._done(host, stage, started, detail=f"generation {prior}")
        except Exception as e:
            if not isinstance(e, LnfleetError):
                log.debug("[%s] unexpected failure", host.name, exc_info=True)
            return self._failed(host, stage, e, started)

    def rollback(self, targets: Sequence[HostSpec]) -> RunReport:
        self.operation = "rollback"
        report = RunReport(operation=self.operation)
        self._run_waves(targets, self.rollback_host, report)
        return self._finish(report)
