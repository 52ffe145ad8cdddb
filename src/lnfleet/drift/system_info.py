# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/drift/system_info.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..remote.channel import RemoteChannel
from .fingerprint import HOST_RECORD_PATH, UpgradeRecord

log = logging.getLogger("lnfleet")

UNAVAILABLE = "unavailable"

VERSION_COMMANDS = {
    "application": "kld --version",
    "database": "cockroach version --build-tag",
    "orchestrator": "lnfleet --version",
    "cli": "kld-cli --version",
}

# database hosts do not ship the application binaries
ROLE_VERSIONS = {
    "database": ("database", "orchestrator"),
}


@dataclass(frozen=True)
class SystemInfo:
    host: str
    record: Optional[UpgradeRecord]
    application_version: str
    database_version: str
    orchestrator_version: str
    cli_version: str

    def matches(self, local: UpgradeRecord) -> bool:
        return self.record is not None and self.record.digest == local.digest

    def lines(self, local: Optional[UpgradeRecord] = None) -> List[str]:
        r = self.record
        out = [
            f"revision: {r.revision if r else UNAVAILABLE}",
            f"revision date: {r.revision_date if r else UNAVAILABLE}",
            f"digest: {r.digest if r else UNAVAILABLE}",
            f"application version: {self.application_version}",
            f"database version: {self.database_version}",
            f"orchestrator version: {self.orchestrator_version}",
            f"cli version: {self.cli_version}",
        ]
        if local is not None:
            out.append(f"matches deployment repository: {'yes' if self.matches(local) else 'no'}")
        return out


def _version(channel: RemoteChannel, cmd: str) -> str:
    rc, out, _ = channel.run(f"{cmd} 2>/dev/null", check=False, stage="system-info")
    text = out.strip().splitlines()
    if rc != 0 or not text:
        return UNAVAILABLE
    return text[0].strip()


def read_host_record(channel: RemoteChannel) -> Optional[UpgradeRecord]:
    text = channel.read_text(HOST_RECORD_PATH)
    if text is None:
        return None
    try:
        return UpgradeRecord.from_json(text)
    except (ValueError, KeyError) as e:
        log.warning("[%s] %s is unreadable: %s", channel.name, HOST_RECORD_PATH, e)
        return None


def system_info(channel: RemoteChannel, role: str) -> SystemInfo:
    """Collect what is deployed on one host. Read-only."""
    wanted = ROLE_VERSIONS.get(role, tuple(VERSION_COMMANDS))
    versions = {
        k: _version(channel, cmd) if k in wanted else UNAVAILABLE
        for k, cmd in VERSION_COMMANDS.items()
    }
    return SystemInfo(
        host=channel.name,
        record=read_host_record(channel),
        application_version=versions["application"],
        database_version=versions["database"],
        orchestrator_version=versions["orchestrator"],
        cli_version=versions["cli"],
    )
