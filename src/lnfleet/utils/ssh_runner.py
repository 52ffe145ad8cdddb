# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/utils/ssh_runner.py

from __future__ import annotations

import logging
import socket
import time
from pathlib import Path
from typing import List, Optional

import paramiko

log = logging.getLogger("lnfleet")


class _LineLogger:
    """Turns arbitrary chunks into whole log lines tagged with the host."""

    def __init__(self, label: str, stream: str, level: int):
        self.label = label
        self.stream = stream
        self.level = level
        self.chunks: List[str] = []
        self._pending = ""

    def feed(self, chunk: str) -> None:
        if not chunk:
            return
        self.chunks.append(chunk)
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._emit(line)

    def flush(self) -> None:
        if self._pending:
            self._emit(self._pending)
            self._pending = ""

    def _emit(self, line: str) -> None:
        if self.stream == "stderr":
            log.log(self.level, "[%s][stderr] %s", self.label, line)
        else:
            log.log(self.level, "[%s] %s", self.label, line)

    def text(self) -> str:
        return "".join(self.chunks)


class SSHRunner:
    def __init__(
        self,
        client: paramiko.SSHClient,
        *,
        label: str = "",
        level: int = logging.DEBUG,
    ):
        self.client = client
        self.label = label
        self.level = level

    def run(
        self,
        cmd: str,
        *,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> tuple[int, str, str]:
        """
        Run *cmd* through the remote login shell, streaming output into the
        log as it arrives. *input* is written to the command's stdin, which
        is then closed. When *timeout* passes before the command exits, the
        session channel is closed and socket.timeout is raised. Returns
        (rc, stdout, stderr).
        """
        log.debug("[%s] $ %s", self.label, cmd)
        stdin, stdout, stderr = self.client.exec_command(cmd, timeout=timeout)
        if input is not None:
            stdin.write(input)
            stdin.flush()
            stdin.channel.shutdown_write()
        out = _LineLogger(self.label, "stdout", self.level)
        err = _LineLogger(self.label, "stderr", self.level)

        ch = stdout.channel
        deadline = None if timeout is None else time.monotonic() + timeout
        while not ch.exit_status_ready():
            busy = False
            if ch.recv_ready():
                out.feed(ch.recv(4096).decode("utf-8", "replace"))
                busy = True
            if ch.recv_stderr_ready():
                err.feed(ch.recv_stderr(4096).decode("utf-8", "replace"))
                busy = True
            if deadline is not None and time.monotonic() >= deadline:
                ch.close()
                log.debug("[%s] [timeout after %ss]", self.label, timeout)
                raise socket.timeout(f"{cmd!r} did not finish within {timeout}s")
            if not busy:
                time.sleep(0.1)

        rc = ch.recv_exit_status()
        out.feed(stdout.read().decode("utf-8", "replace"))
        err.feed(stderr.read().decode("utf-8", "replace"))
        out.flush()
        err.flush()
        log.debug("[%s] [exit %d]", self.label, rc)
        return rc, out.text(), err.text()

    def put_text(self, content: str, remote_path: str, *, mode: Optional[int] = None) -> None:
        sftp = self.client.open_sftp()
        try:
            f = sftp.file(remote_path, "w")
            try:
                f.write(content)
            finally:
                f.close()
            if mode is not None:
                sftp.chmod(remote_path, mode)
        finally:
            sftp.close()

    def put_file(self, local_path: str | Path, remote_path: str, *, mode: Optional[int] = None) -> None:
        sftp = self.client.open_sftp()
        try:
            sftp.put(str(local_path), str(remote_path))
            if mode is not None:
                sftp.chmod(str(remote_path), mode)
        finally:
            sftp.close()

    def close(self) -> None:
        self.client.close()
