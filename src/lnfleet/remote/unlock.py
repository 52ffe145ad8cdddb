# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/remote/unlock.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..config.models import HostSpec
from ..errors import RemoteError
from ..utils.execution import ExecutionContext
from ..utils.ssh import open_ssh
from .channel import Connector, RemoteChannel

log = logging.getLogger("lnfleet")

# sshd inside the initrd listens here while the root disk is still locked
INITRD_SSH_PORT = 2222
ASKPASS = "cryptsetup-askpass"
PROMPT = "Passphrase for"


def unlock(
    host: HostSpec,
    disk_key: Path,
    *,
    ctx: Optional[ExecutionContext] = None,
    connector: Connector = open_ssh,
) -> None:
    """Answer the initrd's passphrase prompt with the disk-encryption key."""
    key = Path(disk_key).read_text().strip()
    with RemoteChannel(host, user="root", port=INITRD_SSH_PORT, ctx=ctx,
                       connector=connector) as ch:
        _, out, err = ch.run(ASKPASS, check=False, input=key + "\n", stage="unlock")
    reply = (out or err).strip()
    if not reply.startswith(PROMPT):
        raise RemoteError(
            f"unexpected reply from {ASKPASS}: {reply[:120] or '(empty)'}",
            host=host.name, stage="unlock",
        )
    log.info("[%s] disk unlocked", host.name)
