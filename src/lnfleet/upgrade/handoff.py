# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/upgrade/handoff.py

from __future__ import annotations

import logging
import shlex

from ..errors import RemoteError
from ..remote.channel import RemoteChannel

log = logging.getLogger("lnfleet")

SYSTEM_PROFILE = "/nix/var/nix/profiles/system"
DISK_KEY_PATH = "/var/lib/secrets/disk_encryption_key"
INITRD_KEY_PATH = "/etc/secrets/disk_encryption_key"

CAPABILITY_PROBE = "command -v kexec >/dev/null 2>&1 && test -r /sys/kernel/kexec_loaded"

# detached so the ssh session returns before the machine goes away
REBOOT_COMMAND = "systemd-run --no-block --on-active=1 systemctl reboot"
KEXEC_COMMAND = "systemd-run --no-block --on-active=1 systemctl kexec"


def kexec_script(profile: str = SYSTEM_PROFILE, key_path: str = DISK_KEY_PATH) -> str:
    """
    Load the default generation's kernel and initrd into the running kernel.

    The disk-encryption key is appended to the initrd as an extra cpio
    archive so the new initrd can unlock the root disk without a prompt.
    """
    return "\n".join([
        "set -eu",
        f"p=$(readlink -f {profile})",
        "work=$(mktemp -d /run/lnfleet-kexec.XXXXXX)",
        "trap 'rm -rf \"$work\"' EXIT",
        "initrd=\"$p/initrd\"",
        f"if [ -r {key_path} ]; then",
        f"  mkdir -p \"$work/root$(dirname {INITRD_KEY_PATH})\"",
        f"  install -m 0400 {key_path} \"$work/root{INITRD_KEY_PATH}\"",
        "  (cd \"$work/root\" && find . -print0 | cpio --null -o -H newc --quiet) > \"$work/extra.cpio\"",
        "  cat \"$p/initrd\" \"$work/extra.cpio\" > \"$work/initrd\"",
        "  initrd=\"$work/initrd\"",
        "fi",
        "kexec --load \"$p/kernel\" --initrd=\"$initrd\" --append=\"$(cat \"$p/kernel-params\") init=$p/init\"",
        KEXEC_COMMAND,
        "",
    ])


class KernelHandoff:
    """Activates the default generation, reboot-free where the host supports kexec."""

    def __init__(self, channel: RemoteChannel):
        self.channel = channel

    def supported(self) -> bool:
        rc, _, _ = self.channel.run(CAPABILITY_PROBE, check=False, stage="handoff")
        return rc == 0

    def perform(self) -> str:
        """Returns "kexec" or "reboot", whichever was scheduled."""
        name = self.channel.name
        if self.supported():
            try:
                self.channel.run(f"sh -c {shlex.quote(kexec_script())}", stage="handoff")
                log.info("[%s] kexec handoff scheduled", name)
                return "kexec"
            except RemoteError as e:
                log.warning("[%s] kexec load failed, falling back to reboot: %s", name, e)
        else:
            log.warning("[%s] kexec not available, falling back to reboot", name)

        self.channel.run(REBOOT_COMMAND, stage="handoff")
        log.info("[%s] reboot scheduled", name)
        return "reboot"
