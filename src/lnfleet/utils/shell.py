# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/utils/shell.py

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from pathlib import Path
from typing import Optional, Sequence, Type

from ..errors import LnfleetError, ProvisionError

log = logging.getLogger("lnfleet")


def run_logged(
    cmd: Sequence[str],
    *,
    label: str,
    level: int = logging.DEBUG,
    env: Optional[dict] = None,
    cwd: Optional[Path] = None,
    timeout: int = 3600,
    error: Type[LnfleetError] = ProvisionError,
    stage: Optional[str] = None,
) -> str:
    """
    Execute a local command (nix, nixos-rebuild, nixos-anywhere, ...) with
    its output streamed into the lnfleet logger.

    - stderr is folded into stdout so output keeps its order
    - returns the combined output
    - raises *error* (tagged with label as host) on non-zero exit or timeout
    """
    log.info("[%s] $ %s", label, shlex.join(cmd))
    start = time.time()

    try:
        proc = subprocess.Popen(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            env=env,
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError:
        raise error(f"{cmd[0]} not found in PATH", host=label, stage=stage) from None

    assert proc.stdout
    lines = []
    try:
        for line in proc.stdout:
            lines.append(line)
            log.log(level, "[%s] %s", label, line.rstrip())
        rc = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        raise error(f"{cmd[0]} timed out after {timeout}s", host=label, stage=stage) from None
    except BaseException:
        # operator interrupt: do not leave the child running
        proc.kill()
        proc.wait()
        raise

    elapsed = round(time.time() - start, 2)
    if rc != 0:
        tail = "".join(lines[-5:]).strip()
        raise error(
            f"{cmd[0]} failed (rc={rc}) after {elapsed}s" + (f": {tail}" if tail else ""),
            host=label, stage=stage,
        )

    log.debug("[%s] %s completed in %ss", label, cmd[0], elapsed)
    return "".join(lines)
