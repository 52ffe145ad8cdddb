# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/remote/channel.py

from __future__ import annotations

import logging
import shlex
import time
from typing import Callable, Optional

import paramiko

from ..config.models import HostSpec
from ..errors import RemoteError
from ..utils.execution import ExecutionContext
from ..utils.retry import RetryError, backoff_delays, retry
from ..utils.ssh import open_ssh
from ..utils.ssh_runner import SSHRunner

log = logging.getLogger("lnfleet")

CONNECT_ERRORS = (paramiko.SSHException, OSError, EOFError)

Connector = Callable[..., SSHRunner]


class RemoteChannel:
    """
    Blocking command channel to exactly one host.

    Connection failures are retried with bounded exponential backoff and
    end in RemoteError naming the host. Closing the channel terminates any
    in-flight command.
    """

    def __init__(
        self,
        host: HostSpec,
        *,
        user: str = "root",
        port: int = 22,
        ctx: Optional[ExecutionContext] = None,
        pkey_path: Optional[str] = None,
        connector: Connector = open_ssh,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.host = host
        self.user = user
        self.port = port
        self.ctx = ctx or ExecutionContext()
        self.pkey_path = pkey_path
        self._connector = connector
        self._sleep = sleep
        self._runner: Optional[SSHRunner] = None

    @property
    def name(self) -> str:
        return self.host.name

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host.ssh_hostname}"

    # ------------------------------------------------------------------
    # connection
    # ------------------------------------------------------------------

    def _open(self) -> SSHRunner:
        return self._connector(
            self.host.ssh_hostname,
            username=self.user,
            port=self.port,
            pkey_path=self.pkey_path,
            connect_timeout=self.ctx.settings.connect_timeout,
            label=self.host.name,
            level=self.ctx.output_level,
        )

    def connect(self) -> "RemoteChannel":
        if self._runner is not None:
            return self
        s = self.ctx.settings

        def _on_retry(attempt: int, exc: Exception) -> None:
            log.warning("[%s] ssh %s attempt %d/%d failed: %s",
                        self.name, self.target, attempt, s.connect_retries, exc)

        opener = retry(
            retries=s.connect_retries,
            delay=s.backoff_initial,
            backoff=2.0,
            max_delay=s.backoff_max,
            retry_on=CONNECT_ERRORS,
            on_retry=_on_retry,
            sleep=self._sleep,
        )(self._open)
        try:
            self._runner = opener()
        except RetryError as e:
            raise RemoteError(
                f"could not connect to {self.target}:{self.port}: {e.__cause__}",
                host=self.name, stage="connect",
            ) from e
        return self

    def wait_reachable(self, timeout: float, *, stage: str = "reconnect") -> None:
        """Poll until an ssh session can be opened again (after a reboot or kexec)."""
        self.close()
        deadline = time.monotonic() + timeout
        delays = backoff_delays(self.ctx.settings.backoff_initial, self.ctx.settings.backoff_max)
        last: Optional[BaseException] = None
        while time.monotonic() < deadline:
            try:
                self._runner = self._open()
                log.info("[%s] reachable again as %s", self.name, self.target)
                return
            except CONNECT_ERRORS as e:
                last = e
                log.debug("[%s] not reachable yet: %s", self.name, e)
                self._sleep(next(delays))
        raise RemoteError(
            f"host did not come back within {int(timeout)}s (last error: {last})",
            host=self.name, stage=stage,
        )

    def close(self) -> None:
        if self._runner is not None:
            try:
                self._runner.close()
            finally:
                self._runner = None

    def __enter__(self) -> "RemoteChannel":
        return self.connect()

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------

    def _require(self) -> SSHRunner:
        if self._runner is None:
            self.connect()
        if self._runner is None:
            raise RemoteError(f"no ssh session to {self.target}", host=self.name, stage="connect")
        return self._runner

    def run(
        self,
        cmd: str,
        *,
        check: bool = True,
        timeout: Optional[float] = None,
        stage: Optional[str] = None,
        input: Optional[str] = None,
    ) -> tuple[int, str, str]:
        runner = self._require()
        try:
            rc, out, err = runner.run(cmd, timeout=timeout, input=input)
        except CONNECT_ERRORS as e:
            self.close()
            raise RemoteError(f"ssh session failed while running {cmd!r}: {e}",
                              host=self.name, stage=stage) from e
        if check and rc != 0:
            detail = (err or out).strip().splitlines()[-1:] or [""]
            raise RemoteError(
                f"{cmd!r} exited with {rc}" + (f": {detail[0]}" if detail[0] else ""),
                host=self.name, stage=stage,
            )
        return rc, out, err

    def output(self, cmd: str, *, timeout: Optional[float] = None, stage: Optional[str] = None) -> str:
        return self.run(cmd, timeout=timeout, stage=stage)[1].strip()

    def read_text(self, path: str) -> Optional[str]:
        rc, out, _ = self.run(f"cat {shlex.quote(path)}", check=False)
        return out if rc == 0 else None

    def put_text(self, content: str, remote_path: str, *, mode: Optional[int] = None) -> None:
        runner = self._require()
        try:
            runner.put_text(content, remote_path, mode=mode)
        except (OSError, paramiko.SSHException) as e:
            raise RemoteError(f"upload to {remote_path} failed: {e}", host=self.name) from e

    def put_file(self, local_path, remote_path: str, *, mode: Optional[int] = None) -> None:
        runner = self._require()
        try:
            runner.put_file(local_path, remote_path, mode=mode)
        except (OSError, paramiko.SSHException) as e:
            raise RemoteError(f"upload to {remote_path} failed: {e}", host=self.name) from e
