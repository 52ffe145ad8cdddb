# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
from typing import Optional

import paramiko

from .ssh_runner import SSHRunner


def load_private_key(path: str) -> Optional[paramiko.PKey]:
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(path)
        except paramiko.SSHException:
            continue
    return None


def open_ssh(
    address: str,
    *,
    username: str = "root",
    port: int = 22,
    pkey_path: Optional[str] = None,
    connect_timeout: float = 20.0,
    label: Optional[str] = None,
    level: int = logging.DEBUG,
) -> SSHRunner:
    client = paramiko.SSHClient()
    # hosts are reinstalled and change keys; the fleet trusts on first use
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = load_private_key(pkey_path) if pkey_path else None

    try:
        client.connect(
            hostname=address,
            port=port,
            username=username,
            pkey=pkey,
            timeout=connect_timeout,
            banner_timeout=connect_timeout,
            auth_timeout=connect_timeout,
            allow_agent=True,
            look_for_keys=True,
        )
    except BaseException:
        client.close()
        raise

    return SSHRunner(client, label=label or address, level=level)
