# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/operation.py

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Set

from .config.models import HostSpec
from .errors import LnfleetError
from .observers.dispatcher import EventBus
from .observers.events import HostFailed, HostStageEntered, HostSucceeded, new_ctx, stamp
from .remote.channel import RemoteChannel
from .report import DONE, FAILED, HostOutcome
from .utils.execution import ExecutionContext

log = logging.getLogger("lnfleet")

ChannelFactory = Callable[[HostSpec, str], RemoteChannel]


class FleetOperation:
    """
    Shared plumbing for per-host state machines: channel bookkeeping so an
    interrupt can terminate in-flight sessions, stage events, and outcome
    construction.
    """

    operation = "operation"

    def __init__(
        self,
        *,
        ctx: Optional[ExecutionContext] = None,
        observers: Optional[List] = None,
        run_ctx: Optional[dict] = None,
        channel_factory: Optional[ChannelFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx or ExecutionContext()
        self.bus = EventBus(observers or [])
        self.run_ctx = run_ctx or new_ctx(cluster="-")
        self._channel_factory = channel_factory or self._default_channel
        self._sleep = sleep
        self._channels: Set[RemoteChannel] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # channels
    # ------------------------------------------------------------------

    def _default_channel(self, host: HostSpec, user: str) -> RemoteChannel:
        return RemoteChannel(host, user=user, ctx=self.ctx)

    def _open(self, host: HostSpec, user: str = "root") -> RemoteChannel:
        ch = self._channel_factory(host, user)
        with self._lock:
            self._channels.add(ch)
        return ch

    def _release(self, ch: RemoteChannel) -> None:
        with self._lock:
            self._channels.discard(ch)
        ch.close()

    def abort(self) -> None:
        """Terminate every in-flight remote session."""
        with self._lock:
            channels = list(self._channels)
            self._channels.clear()
        for ch in channels:
            try:
                ch.close()
            except Exception as e:
                log.warning("[%s] closing channel failed: %s", ch.name, e)

    # ------------------------------------------------------------------
    # stages and outcomes
    # ------------------------------------------------------------------

    def _enter(self, host: HostSpec, stage: str) -> str:
        log.info("[%s] %s", host.name, stage)
        self.bus.emit(HostStageEntered(host=host.name, operation=self.operation, stage=stage,
                                       **stamp(self.run_ctx)))
        return stage

    def _done(self, host: HostSpec, stage: str, started: float,
              detail: Optional[str] = None) -> HostOutcome:
        ms = int((time.time() - started) * 1000)
        self.bus.emit(HostSucceeded(host=host.name, operation=self.operation, duration_ms=ms,
                                    **stamp(self.run_ctx)))
        log.info("[%s] %s done", host.name, self.operation)
        return HostOutcome(name=host.name, status=DONE, stage=stage, duration_ms=ms, detail=detail)

    def _failed(self, host: HostSpec, stage: str, err: BaseException, started: float) -> HostOutcome:
        msg = err.message if isinstance(err, LnfleetError) else f"{type(err).__name__}: {err}"
        ms = int((time.time() - started) * 1000)
        self.bus.emit(HostFailed(host=host.name, operation=self.operation, stage=stage, error=msg,
                                 **stamp(self.run_ctx)))
        log.error("[%s] %s failed in %s: %s", host.name, self.operation, stage, msg)
        return HostOutcome(name=host.name, status=FAILED, stage=stage, error=msg, duration_ms=ms)

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.ctx.settings.parallelism,
                                  thread_name_prefix=self.operation)

    def run_parallel(
        self,
        hosts: Sequence[HostSpec],
        fn: Callable[[HostSpec], HostOutcome],
    ) -> List[HostOutcome]:
        """Run *fn* for every host with bounded parallelism; outcomes in host order."""
        pool = self._pool()
        try:
            futures = [pool.submit(fn, h) for h in hosts]
            outcomes = [f.result() for f in futures]
        except KeyboardInterrupt:
            log.warning("interrupted, closing remote sessions")
            self.abort()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return outcomes
