# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/image/sandbox.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Tuple

# Restrictions requested from the supervisor for every managed service.
# The orchestrator only declares them; the compiled image enforces them.
BASELINE: Tuple[str, ...] = (
    "NoNewPrivileges",
    "PrivateTmp",
    "PrivateDevices",
    "ProtectSystem=strict",
    "ProtectHome",
    "ProtectKernelTunables",
    "ProtectKernelModules",
    "ProtectControlGroups",
    "RestrictSUIDSGID",
    "LockPersonality",
    "MemoryDenyWriteExecute",
    "SystemCallArchitectures=native",
)


@dataclass(frozen=True)
class ServicePolicy:
    service: str
    restrictions: Tuple[str, ...] = BASELINE
    after: Tuple[str, ...] = ()             # start ordering
    requires: Tuple[str, ...] = ()          # hard dependencies
    secret_paths: Tuple[str, ...] = ()      # must exist before first start
    writable_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SandboxPolicy:
    role: str
    services: Tuple[ServicePolicy, ...] = field(default_factory=tuple)

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


def _secret(path: str) -> str:
    return f"/var/lib/secrets/{path}"


def policy_for(role: str, *, with_database: bool = True) -> SandboxPolicy:
    if role == "database":
        return SandboxPolicy(
            role=role,
            services=(
                ServicePolicy(
                    service="cockroachdb",
                    after=("network-online.target",),
                    secret_paths=(_secret("database/ca.crt"), _secret("database/node.crt"),
                                  _secret("database/node.key")),
                    writable_paths=("/var/lib/cockroachdb",),
                ),
            ),
        )

    kld_after = ["bitcoind.service"]
    kld_secrets = [_secret("app/ca.pem"), _secret("app/node.pem"), _secret("app/node.key")]
    if with_database:
        kld_secrets += [_secret("app/database/ca.crt"), _secret("app/database/client.kld.crt"),
                        _secret("app/database/client.kld.key")]
    return SandboxPolicy(
        role=role,
        services=(
            ServicePolicy(
                service="bitcoind",
                after=("network-online.target",),
                writable_paths=("/var/lib/bitcoind",),
            ),
            ServicePolicy(
                service="kld",
                after=tuple(kld_after),
                requires=("bitcoind.service",),
                secret_paths=tuple(kld_secrets),
                writable_paths=("/var/lib/kld",),
            ),
        ),
    )


def policies(roles: List[str], *, with_database: bool) -> Dict[str, Dict[str, object]]:
    return {r: policy_for(r, with_database=with_database).as_dict() for r in sorted(set(roles))}
