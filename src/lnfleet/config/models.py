# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/config/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# ------------------------------------------------------------------------------
# Cluster description (operator authored, TOML)
# ------------------------------------------------------------------------------

class GlobalSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deployment_flake: str                       # source-of-truth repository
    application_flake: str = "github:kuutamolabs/lightning-knd"
    access_tokens: str = ""                     # "github.com=ghp_..." style
    secret_directory: str = "secrets"           # relative to the description file


class HostFields(BaseModel):
    """Fields that may appear both in [host_defaults] and in [hosts.<name>]."""

    model_config = ConfigDict(extra="forbid")

    ipv4_gateway: Optional[str] = None
    ipv4_cidr: Optional[int] = None
    ipv6_gateway: Optional[str] = None
    ipv6_cidr: Optional[int] = None
    network_interface: Optional[str] = None
    install_ssh_user: Optional[str] = None

    public_ssh_keys: Optional[List[str]] = None
    extra_modules: Optional[List[str]] = None
    disks: Optional[List[str]] = None
    indexer_disks: Optional[List[str]] = None

    monitoring_url: Optional[str] = None
    monitoring_username: Optional[str] = None
    monitoring_password: Optional[str] = None
    log_push_url: Optional[str] = None

    node_alias_color: Optional[str] = None
    log_level: Optional[str] = None
    api_port: Optional[int] = None
    api_access_list: Optional[List[str]] = None
    shutdown_graceful_sec: Optional[int] = None


class HostDefaults(HostFields):
    pass


class HostOverride(HostFields):
    role: Optional[str] = None
    ipv4_address: Optional[str] = None
    ipv6_address: Optional[str] = None
    mac_address: Optional[str] = None
    ssh_hostname: Optional[str] = None
    node_alias: Optional[str] = None
    upgrade_schedule: Optional[str] = None


# list fields that append to the defaults instead of replacing them
ADDITIVE_FIELDS = frozenset({"public_ssh_keys", "extra_modules"})


class ClusterDescription(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    global_: GlobalSettings = Field(alias="global")
    host_defaults: HostDefaults = Field(default_factory=HostDefaults)
    hosts: Dict[str, HostOverride] = Field(default_factory=dict)  # order is significant

    def host_names(self) -> List[str]:
        return list(self.hosts.keys())


# ------------------------------------------------------------------------------
# Roles
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class RoleProfile:
    name: str
    module: str              # system-image module the compiler composes in
    service_user: str        # owner of the role's secrets
    service_uid: int
    quorum: bool             # at most one host of the role may upgrade at a time


ROLES: Dict[str, RoleProfile] = {
    "application": RoleProfile("application", "kld-node", "kld", 1100, quorum=False),
    "database": RoleProfile("database", "cockroachdb-node", "cockroachdb", 1101, quorum=True),
}


# ------------------------------------------------------------------------------
# Resolved host (pure function of the description)
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class NetworkAddress:
    address: str
    gateway: str
    prefix: int


@dataclass(frozen=True)
class PeerAddress:
    name: str
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None


@dataclass(frozen=True)
class MonitoringSettings:
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    log_push_url: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.url or self.log_push_url)


@dataclass(frozen=True)
class HostSpec:
    name: str
    role: str                                   # "application" | "database"
    ipv4: Optional[NetworkAddress]
    ipv6: Optional[NetworkAddress]
    ssh_hostname: str
    install_ssh_user: str
    disks: Tuple[str, ...]
    public_ssh_keys: Tuple[str, ...]
    upgrade_order: int                          # stagger ordinal
    mac_address: Optional[str] = None
    network_interface: str = "eth0"
    indexer_disks: Tuple[str, ...] = ()
    extra_modules: Tuple[str, ...] = ()
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)

    # application role
    node_alias: Optional[str] = None
    node_alias_color: Optional[str] = None
    log_level: str = "info"
    api_port: int = 2244
    api_access_list: Tuple[str, ...] = ()
    shutdown_graceful_sec: Optional[int] = None

    # database topology
    database_peers: Tuple[PeerAddress, ...] = ()
    join_list: Tuple[str, ...] = ()
    extra_hosts: Tuple[Tuple[str, str], ...] = ()   # (address, name), /etc/hosts order
    bootstrap_host: Optional[str] = None            # must reach Done before this host starts

    upgrade_schedule: Optional[str] = None

    @property
    def profile(self) -> RoleProfile:
        return ROLES[self.role]

    @property
    def address(self) -> str:
        return self.ipv4.address if self.ipv4 else self.ipv6.address  # type: ignore[union-attr]

    def advertised_addresses(self) -> List[str]:
        return [a.address for a in (self.ipv4, self.ipv6) if a is not None]
