# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/image/compiler.py

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config.models import GlobalSettings, HostSpec, ROLES
from ..drift.fingerprint import HOST_RECORD_PATH, UpgradeRecord
from ..errors import LnfleetError, ProvisionError
from ..upgrade.handoff import kexec_script
from ..upgrade.schedule import window_for
from ..utils.execution import ExecutionContext
from ..utils.shell import run_logged
from ..utils.template_renderer import TemplateRenderer
from .sandbox import policies

log = logging.getLogger("lnfleet")

DESCRIPTOR_PATH = "/etc/lnfleet/host.json"


class CompileError(ProvisionError):
    pass


@dataclass(frozen=True)
class ImageRef:
    host: str
    flake_attr: str              # "<flake dir>#<host>"
    store_path: Optional[str] = None


def _network(addr) -> Optional[Dict[str, Any]]:
    if addr is None:
        return None
    return {"address": addr.address, "gateway": addr.gateway, "prefix": addr.prefix}


def host_descriptor(host: HostSpec) -> Dict[str, Any]:
    """The per-host document the flake turns into a system image."""
    window = window_for(host)
    d: Dict[str, Any] = {
        "name": host.name,
        "role": host.role,
        "module": ROLES[host.role].module,
        "service_uid": ROLES[host.role].service_uid,
        "network": {
            "interface": host.network_interface,
            "mac_address": host.mac_address,
            "ipv4": _network(host.ipv4),
            "ipv6": _network(host.ipv6),
        },
        "disks": list(host.disks),
        "public_ssh_keys": list(host.public_ssh_keys),
        "extra_modules": list(host.extra_modules),
        "extra_hosts": [{"address": a, "name": n} for a, n in host.extra_hosts],
        "monitoring": {
            "enabled": host.monitoring.configured,
            "metrics": bool(host.monitoring.url),
            "logs": bool(host.monitoring.log_push_url),
            "credentials_file": "/var/lib/secrets/monitoring-credentials",
        },
        "database": {
            "peers": [
                {"name": p.name, "ipv4": p.ipv4, "ipv6": p.ipv6} for p in host.database_peers
            ],
            "join": list(host.join_list),
            "bootstrap": host.bootstrap_host is None and host.role == "database",
        },
        "upgrade": {
            "order": host.upgrade_order,
            "calendar": host.upgrade_schedule or (window.calendar if window else None),
            "handoff_script": kexec_script(),
        },
        "secrets_dir": "/var/lib/secrets",
        "system_info_path": HOST_RECORD_PATH,
        "descriptor_path": DESCRIPTOR_PATH,
    }
    if host.role == "application":
        d["application"] = {
            "node_alias": host.node_alias,
            "node_alias_color": host.node_alias_color,
            "log_level": host.log_level,
            "api_port": host.api_port,
            "api_access_list": list(host.api_access_list),
            "indexer_disks": list(host.indexer_disks),
            "advertised_addresses": host.advertised_addresses(),
            "shutdown_graceful_sec": host.shutdown_graceful_sec,
        }
    return d


def descriptor_json(host: HostSpec) -> str:
    return json.dumps(host_descriptor(host), indent=2, sort_keys=True) + "\n"


class SystemImageCompiler:
    """
    Adapter around the declarative system-image toolchain (nix).

    Writes a generated flake with one JSON descriptor per host, and drives
    `nix build` / `nixos-rebuild` against it. Nothing here touches a host
    except through nixos-rebuild's --target-host.
    """

    def __init__(
        self,
        settings: GlobalSettings,
        fleet: Sequence[HostSpec],
        flake_dir: Path,
        *,
        record: Optional[UpgradeRecord] = None,
        ctx: Optional[ExecutionContext] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        self.settings = settings
        self.fleet = list(fleet)
        self.flake_dir = Path(flake_dir)
        self.record = record
        self.ctx = ctx or ExecutionContext()
        self.renderer = renderer or TemplateRenderer()
        self._written = False

    # ------------------------------------------------------------------
    # generated flake
    # ------------------------------------------------------------------

    def write_flake(self, out_dir: Optional[Path] = None) -> List[Path]:
        out = Path(out_dir) if out_dir else self.flake_dir
        out.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []

        flake = self.renderer.render(
            "flake.nix.j2",
            {
                "deployment_flake": self.settings.deployment_flake,
                "application_flake": self.settings.application_flake,
                "hosts": [h.name for h in self.fleet],
                "has_record": self.record is not None,
            },
        )
        written.append(self._write(out / "flake.nix", flake))

        for host in self.fleet:
            written.append(self._write(out / f"{host.name}.json", descriptor_json(host)))

        with_db = any(h.role == "database" for h in self.fleet)
        sandbox = policies([h.role for h in self.fleet], with_database=with_db)
        written.append(self._write(out / "sandbox.json",
                                   json.dumps(sandbox, indent=2, sort_keys=True) + "\n"))

        if self.record is not None:
            written.append(self._write(out / "system-info.json", self.record.to_json()))

        if out == self.flake_dir:
            self._written = True
        return written

    @staticmethod
    def _write(path: Path, text: str) -> Path:
        path.write_text(text)
        log.debug("wrote %s", path)
        return path

    def prepare(self) -> None:
        if not self._written:
            self.write_flake()

    def flake_ref(self, host: HostSpec) -> str:
        return f"{self.flake_dir}#{host.name}"

    # ------------------------------------------------------------------
    # toolchain
    # ------------------------------------------------------------------

    def build(self, host: HostSpec) -> ImageRef:
        self.prepare()
        attr = f"{self.flake_dir}#nixosConfigurations.{host.name}.config.system.build.toplevel"
        out = run_logged(
            ["nix", "build", "--no-link", "--print-out-paths", attr],
            label=host.name, level=self.ctx.output_level,
            error=CompileError, stage="compile",
        )
        paths = [line for line in out.splitlines() if line.startswith("/nix/store/")]
        return ImageRef(host=host.name, flake_attr=self.flake_ref(host),
                        store_path=paths[-1] if paths else None)

    def _rebuild(self, host: HostSpec, action: str, stage: str) -> str:
        self.prepare()
        cmd = [
            "nixos-rebuild", action,
            "--flake", self.flake_ref(host),
            "--target-host", f"root@{host.ssh_hostname}",
            "--use-substitutes",
        ]
        return run_logged(cmd, label=host.name, level=self.ctx.output_level,
                          error=ProvisionError, stage=stage)

    def switch(self, host: HostSpec, *, action: str = "boot") -> None:
        """Build and register a new generation on the host, retried once."""
        try:
            self._rebuild(host, action, "activate")
        except LnfleetError as e:
            log.warning("[%s] nixos-rebuild %s failed, retrying once: %s", host.name, action, e)
            self._rebuild(host, action, "activate")

    def dry_activate(self, host: HostSpec) -> str:
        return self._rebuild(host, "dry-activate", "dry-update")
