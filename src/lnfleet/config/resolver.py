# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/config/resolver.py

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import (
    ConfigError,
    DuplicateHostError,
    InvalidFieldError,
    MissingGatewayError,
    NoDisksError,
    NoNetworkError,
    UnknownRoleError,
    UnresolvablePeerError,
)
from .loader import overlay
from .models import (
    ROLES,
    ClusterDescription,
    HostSpec,
    MonitoringSettings,
    NetworkAddress,
    PeerAddress,
)

log = logging.getLogger("lnfleet")

HOST_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9\-]{0,62}$")
MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")
LOG_LEVELS = ("error", "warn", "info", "debug", "trace")
STAGE = "resolve"


def _network(
    host: str,
    family: str,
    address: Optional[str],
    gateway: Optional[str],
    prefix: Optional[int],
) -> Optional[NetworkAddress]:
    if not address:
        return None

    max_prefix = 32 if family == "ipv4" else 128
    if "/" in address:
        if family == "ipv4":
            raise InvalidFieldError(
                f"ipv4_address {address!r} must not carry a prefix, use ipv4_cidr",
                host=host, stage=STAGE,
            )
        address, mask = address.split("/", 1)
        try:
            suffix = int(mask)
        except ValueError:
            raise InvalidFieldError(
                f"ipv6_address has an invalid prefix {mask!r}", host=host, stage=STAGE
            ) from None
        if prefix is not None and prefix != suffix:
            log.warning(
                "[%s] ipv6_address prefix /%d overrides ipv6_cidr %d", host, suffix, prefix
            )
        prefix = suffix

    try:
        parsed = ipaddress.ip_address(address)
    except ValueError:
        raise InvalidFieldError(
            f"{family}_address {address!r} is not a valid address", host=host, stage=STAGE
        ) from None
    if parsed.version != (4 if family == "ipv4" else 6):
        raise InvalidFieldError(
            f"{family}_address {address!r} is not an {family} address", host=host, stage=STAGE
        )

    if not gateway:
        raise MissingGatewayError(
            f"{family}_address {address} is set but no {family}_gateway is configured",
            host=host, stage=STAGE,
        )
    if prefix is None:
        raise InvalidFieldError(
            f"{family}_address {address} is set but no {family}_cidr is configured",
            host=host, stage=STAGE,
        )
    if not 0 <= prefix <= max_prefix:
        raise InvalidFieldError(
            f"{family}_cidr must be between 0 and {max_prefix}, got {prefix}",
            host=host, stage=STAGE,
        )
    return NetworkAddress(address=str(parsed), gateway=gateway, prefix=prefix)


def _check_name(name: str, seen: Dict[str, str]) -> None:
    if not HOST_NAME_RE.match(name):
        raise InvalidFieldError(
            "host name must be 1-63 characters of a-z, 0-9 and '-', not starting with '-'",
            host=name, stage=STAGE,
        )
    folded = name.casefold()
    if folded in seen:
        raise DuplicateHostError(
            f"host name collides with '{seen[folded]}'", host=name, stage=STAGE
        )
    seen[folded] = name


def _host_kwargs(name: str, order: int, fields: Dict[str, Any]) -> Dict[str, Any]:
    role = fields.get("role")
    if role not in ROLES:
        raise UnknownRoleError(
            f"unknown role {role!r}, expected one of {', '.join(ROLES)}",
            host=name, stage=STAGE,
        )

    ipv4 = _network(name, "ipv4", fields.get("ipv4_address"),
                    fields.get("ipv4_gateway"), fields.get("ipv4_cidr"))
    ipv6 = _network(name, "ipv6", fields.get("ipv6_address"),
                    fields.get("ipv6_gateway"), fields.get("ipv6_cidr"))
    if ipv4 is None and ipv6 is None:
        raise NoNetworkError(
            "no network configured: set ipv4_address or ipv6_address",
            host=name, stage=STAGE,
        )

    disks = tuple(fields.get("disks") or ())
    if not disks:
        raise NoDisksError("no disks configured", host=name, stage=STAGE)

    keys = tuple(fields.get("public_ssh_keys") or ())
    if not keys:
        raise InvalidFieldError("no public_ssh_keys configured", host=name, stage=STAGE)

    mac = fields.get("mac_address")
    if mac is not None and not MAC_RE.match(mac):
        raise InvalidFieldError(f"invalid mac_address {mac!r}", host=name, stage=STAGE)

    alias = fields.get("node_alias")
    if alias is not None and (not alias.isascii() or len(alias.encode()) > 32):
        raise InvalidFieldError(
            "node_alias must be an ASCII string of at most 32 bytes", host=name, stage=STAGE
        )

    log_level = fields.get("log_level", "info")
    if log_level not in LOG_LEVELS:
        raise InvalidFieldError(
            f"log_level must be one of {', '.join(LOG_LEVELS)}", host=name, stage=STAGE
        )

    indexer_disks = tuple(fields.get("indexer_disks") or ())
    if indexer_disks and role != "application":
        raise InvalidFieldError(
            "indexer_disks only applies to the application role", host=name, stage=STAGE
        )

    address = ipv4.address if ipv4 else ipv6.address  # type: ignore[union-attr]
    return dict(
        name=name,
        role=role,
        ipv4=ipv4,
        ipv6=ipv6,
        ssh_hostname=fields.get("ssh_hostname") or address,
        install_ssh_user=fields.get("install_ssh_user") or "root",
        disks=disks,
        public_ssh_keys=keys,
        upgrade_order=order,
        mac_address=mac,
        network_interface=fields.get("network_interface") or "eth0",
        indexer_disks=indexer_disks,
        extra_modules=tuple(fields.get("extra_modules") or ()),
        monitoring=MonitoringSettings(
            url=fields.get("monitoring_url"),
            username=fields.get("monitoring_username"),
            password=fields.get("monitoring_password"),
            log_push_url=fields.get("log_push_url"),
        ),
        node_alias=alias,
        node_alias_color=fields.get("node_alias_color"),
        log_level=log_level,
        api_port=fields.get("api_port", 2244),
        api_access_list=tuple(fields.get("api_access_list") or ()),
        shutdown_graceful_sec=fields.get("shutdown_graceful_sec"),
        upgrade_schedule=fields.get("upgrade_schedule"),
    )


def _static_hosts(peers: Sequence[PeerAddress]) -> Tuple[Tuple[str, str], ...]:
    entries: List[Tuple[str, str]] = []
    for peer in peers:
        for addr in (peer.ipv4, peer.ipv6):
            if addr:
                entries.append((addr, peer.name))
    return tuple(entries)


def _check_resolvable(join: Sequence[str], extra_hosts: Sequence[Tuple[str, str]]) -> None:
    mapped = {name for _, name in extra_hosts}
    for member in join:
        if member not in mapped:
            raise UnresolvablePeerError(
                f"database peer '{member}' has no address in the static host mapping",
                host=member, stage=STAGE,
            )


def resolve(desc: ClusterDescription) -> List[HostSpec]:
    """
    Resolve every host of the description into a HostSpec.

    Pure and order-preserving: the same description always yields the same
    list, in description order. Raises a ConfigError subclass on the first
    invalid host.
    """
    if not desc.hosts:
        raise ConfigError("no hosts defined in the cluster description", stage=STAGE)

    defaults = desc.host_defaults.model_dump(exclude_none=True)
    seen: Dict[str, str] = {}
    partial: List[Dict[str, Any]] = []

    for order, (name, override) in enumerate(desc.hosts.items()):
        _check_name(name, seen)
        fields = overlay(defaults, override.model_dump(exclude_none=True))
        partial.append(_host_kwargs(name, order, fields))

    peers = tuple(
        PeerAddress(
            name=kw["name"],
            ipv4=kw["ipv4"].address if kw["ipv4"] else None,
            ipv6=kw["ipv6"].address if kw["ipv6"] else None,
        )
        for kw in partial
        if kw["role"] == "database"
    )
    join = tuple(p.name for p in peers) if len(peers) > 1 else ()
    extra_hosts = _static_hosts(peers)
    _check_resolvable(join, extra_hosts)

    bootstrap = peers[0].name if peers else None

    return [
        HostSpec(
            **kw,
            database_peers=peers,
            join_list=join,
            extra_hosts=extra_hosts,
            bootstrap_host=None if kw["name"] == bootstrap else bootstrap,
        )
        for kw in partial
    ]


def validate_host(host: HostSpec) -> None:
    """Re-check invariants of an already resolved host before touching it."""
    if host.role not in ROLES:
        raise UnknownRoleError(f"unknown role {host.role!r}", host=host.name, stage="validate")
    if host.ipv4 is None and host.ipv6 is None:
        raise NoNetworkError("no network configured", host=host.name, stage="validate")
    if not host.disks:
        raise NoDisksError("no disks configured", host=host.name, stage="validate")
    if not host.public_ssh_keys:
        raise InvalidFieldError("no public_ssh_keys configured", host=host.name, stage="validate")
