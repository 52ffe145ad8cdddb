# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/install/orchestrator.py

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..config.models import HostSpec
from ..config.resolver import validate_host
from ..errors import LnfleetError, RemoteError, SecretError
from ..image.compiler import DESCRIPTOR_PATH, SystemImageCompiler
from ..observers.events import RunSummary, SecretsPushed, stamp
from ..operation import ChannelFactory, FleetOperation
from ..remote.channel import RemoteChannel
from ..report import HostOutcome, RunReport
from ..secrets.provisioner import SecretProvisioner
from ..utils.execution import ExecutionContext
from .planner import dependencies, plan
from .provision import BareMetalProvisioner, InstallOptions
from .readiness import init_cluster, needs_init, wait_ready

log = logging.getLogger("lnfleet")

VALIDATE = "Validate"
COMPILE = "Compile"
PROVISION = "Provision"
SECRET_PUSH = "SecretPush"
FIRST_BOOT = "FirstBoot"
READINESS_WAIT = "ReadinessWait"
STAGES = (VALIDATE, COMPILE, PROVISION, SECRET_PUSH, FIRST_BOOT, READINESS_WAIT)

INSTALLER_ROOT = "/mnt"
INSTALLER_REBOOT = "nohup sh -c 'sleep 2; reboot' >/dev/null 2>&1 &"


class InstallOrchestrator(FleetOperation):
    """
    Drives Validate -> Compile -> Provision -> SecretPush -> FirstBoot ->
    ReadinessWait for every targeted host.

    Hosts are independent: a failure is recorded in the report and never
    rolls back or blocks hosts that already reached Done. The only ordering
    is bootstrap-before-join for database peers.
    """

    operation = "install"

    def __init__(
        self,
        compiler: SystemImageCompiler,
        secrets: SecretProvisioner,
        machine: BareMetalProvisioner,
        *,
        ctx: Optional[ExecutionContext] = None,
        options: Optional[InstallOptions] = None,
        observers: Optional[List] = None,
        run_ctx: Optional[dict] = None,
        channel_factory: Optional[ChannelFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(ctx=ctx, observers=observers, run_ctx=run_ctx,
                         channel_factory=channel_factory, sleep=sleep)
        self.compiler = compiler
        self.secrets = secrets
        self.machine = machine
        self.options = options or InstallOptions(debug=self.ctx.debug)

    # ------------------------------------------------------------------
    # per-host state machine
    # ------------------------------------------------------------------

    def _wait_first_boot(self, ch: RemoteChannel, host: HostSpec) -> None:
        """Wait for the installed system, not the installer that is going down."""
        timeout = self.ctx.settings.reboot_timeout
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RemoteError(f"installed system did not boot within {int(timeout)}s",
                                  host=host.name, stage="first-boot")
            ch.wait_reachable(remaining, stage="first-boot")
            rc, _, _ = ch.run(f"test -e {DESCRIPTOR_PATH}", check=False, stage="first-boot")
            if rc == 0:
                return
            ch.close()
            self._sleep(self.ctx.settings.backoff_initial)

    def install_host(self, host: HostSpec) -> HostOutcome:
        started = time.time()
        stage = VALIDATE
        try:
            stage = self._enter(host, VALIDATE)
            validate_host(host)
            bundle = self.secrets.bundle_for(host)

            stage = self._enter(host, COMPILE)
            image = self.compiler.build(host)
            log.info("[%s] image %s", host.name, image.store_path or image.flake_attr)

            stage = self._enter(host, PROVISION)
            self.machine.provision(host, self.options)

            stage = self._enter(host, SECRET_PUSH)
            # the installer accepts root with the operator's keys
            ch = self._open(host, "root")
            try:
                self.secrets.push(ch, bundle, root=INSTALLER_ROOT)
                self.bus.emit(SecretsPushed(host=host.name, files=len(bundle.files),
                                            **stamp(self.run_ctx)))

                if self.options.no_reboot:
                    log.warning("[%s] --no-reboot: left in the installer, reboot it to finish",
                                host.name)
                    return self._done(host, stage, started, detail="not rebooted")

                stage = self._enter(host, FIRST_BOOT)
                ch.run(INSTALLER_REBOOT, check=False, stage="first-boot")
                ch.close()
                self.machine.forget_host_key(host)
                self._wait_first_boot(ch, host)

                stage = self._enter(host, READINESS_WAIT)
                if needs_init(host):
                    init_cluster(ch, host, self.ctx.settings, sleep=self._sleep)
                wait_ready(ch, host, self.ctx.settings, bus=self.bus, run_ctx=self.run_ctx,
                           sleep=self._sleep)
            finally:
                self._release(ch)

            return self._done(host, stage, started)

        except LnfleetError as e:
            return self._failed(host, stage, e, started)
        except Exception as e:
            log.debug("[%s] unexpected failure", host.name, exc_info=True)
            return self._failed(host, stage, e, started)

    # ------------------------------------------------------------------
    # fleet
    # ------------------------------------------------------------------

    def _prepare_secrets(self, ordered: Sequence[HostSpec], report: RunReport) -> List[HostSpec]:
        """Create local material host by host; hosts whose material cannot exist fail here."""
        ready: List[HostSpec] = []
        for host in ordered:
            try:
                self.secrets.ensure([host])
                ready.append(host)
            except SecretError as e:
                report.add(self._failed(host, VALIDATE, e, time.time()))
        return ready

    def run(self, targets: Sequence[HostSpec]) -> RunReport:
        report = RunReport(operation="install")

        # local validation aborts the whole run before any remote call
        for host in targets:
            validate_host(host)
        ordered = plan(targets, bus=self.bus, run_ctx=self.run_ctx)

        runnable = self._prepare_secrets(ordered, report)
        failed = {o.name for o in report.outcomes}
        self.compiler.prepare()

        targeted = {h.name for h in targets}
        pending: List[HostSpec] = list(runnable)
        running: Dict[Future, HostSpec] = {}
        done: Set[str] = set()

        pool = self._pool()
        try:
            while pending or running:
                for host in list(pending):
                    deps = dependencies(host, targeted)
                    blocked = deps & failed
                    if blocked:
                        pending.remove(host)
                        dep = sorted(blocked)[0]
                        outcome = self._failed(
                            host, VALIDATE,
                            LnfleetError(f"bootstrap host '{dep}' failed; not started"),
                            time.time(),
                        )
                        report.add(outcome)
                        failed.add(host.name)
                    elif deps <= done:
                        pending.remove(host)
                        running[pool.submit(self.install_host, host)] = host

                if not running:
                    if pending:
                        raise LnfleetError(
                            "unschedulable hosts: " + ", ".join(h.name for h in pending),
                            stage="plan",
                        )
                    break

                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for fut in finished:
                    host = running.pop(fut)
                    outcome = fut.result()
                    report.add(outcome)
                    (done if outcome.ok else failed).add(host.name)
        except KeyboardInterrupt:
            log.warning("interrupted, closing remote sessions")
            self.abort()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)

        self.bus.emit(RunSummary(operation="install", ok=len(done), failed=len(failed),
                                 **stamp(self.run_ctx)))
        log.info(report.summary())
        return report
