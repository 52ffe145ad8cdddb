# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/install/provision.py

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..config.models import HostSpec
from ..errors import ProvisionError
from ..image.compiler import SystemImageCompiler
from ..utils.execution import ExecutionContext
from ..utils.shell import run_logged

log = logging.getLogger("lnfleet")

DEFAULT_KEXEC_URL = (
    "https://github.com/nix-community/nixos-images/releases/download/"
    "nixos-22.11/nixos-kexec-installer-x86_64-linux.tar.gz"
)
INSTALLER_DISK_KEY = "/var/lib/disk_encryption_key"


@dataclass(frozen=True)
class InstallOptions:
    kexec_url: str = DEFAULT_KEXEC_URL
    debug: bool = False
    no_reboot: bool = False       # leave the host in the installer after secrets land


class BareMetalProvisioner:
    """
    Wipes the target disks and writes the system image with nixos-anywhere.

    The machine is left running the installer with the new system mounted
    on /mnt, so secrets can be pushed before its first boot.
    """

    def __init__(
        self,
        compiler: SystemImageCompiler,
        disk_key: Path,
        *,
        ctx: Optional[ExecutionContext] = None,
    ):
        self.compiler = compiler
        self.disk_key = Path(disk_key)
        self.ctx = ctx or ExecutionContext()

    def command(self, host: HostSpec, options: InstallOptions) -> List[str]:
        cmd = [
            "nixos-anywhere",
            "--flake", self.compiler.flake_ref(host),
            "--kexec", options.kexec_url,
            "--disk-encryption-keys", INSTALLER_DISK_KEY, str(self.disk_key),
            "--no-reboot",
        ]
        if options.debug:
            cmd.append("--debug")
        cmd.append(f"{host.install_ssh_user}@{host.ssh_hostname}")
        return cmd

    def provision(self, host: HostSpec, options: InstallOptions) -> None:
        if not self.disk_key.exists():
            raise ProvisionError(f"disk encryption key {self.disk_key} is missing",
                                 host=host.name, stage="provision")
        self.compiler.prepare()
        run_logged(
            self.command(host, options),
            label=host.name,
            level=self.ctx.output_level,
            error=ProvisionError,
            stage="provision",
        )

    @staticmethod
    def forget_host_key(host: HostSpec) -> None:
        """The reinstalled host presents a new key; drop the stale known_hosts entry."""
        try:
            proc = subprocess.run(
                ["ssh-keygen", "-R", host.ssh_hostname],
                capture_output=True, text=True,
            )
        except FileNotFoundError:
            log.warning("[%s] ssh-keygen not found, known_hosts left as is", host.name)
            return
        if proc.returncode != 0:
            log.warning("[%s] ssh-keygen -R %s failed: %s",
                        host.name, host.ssh_hostname, proc.stderr.strip())
