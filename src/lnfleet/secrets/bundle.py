# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/secrets/bundle.py

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..errors import SecretError

SECRETS_ROOT = "/var/lib/secrets"
ROOT_UID = 0


@dataclass(frozen=True)
class SecretFile:
    remote_path: str                  # relative to SECRETS_ROOT
    owner_uid: int
    mode: int = 0o400
    source: Optional[Path] = None     # file in the local secrets directory
    content: Optional[str] = None     # generated from the description instead

    def read(self) -> bytes:
        if self.content is not None:
            return self.content.encode()
        if self.source is None:
            raise SecretError(f"{self.remote_path} has neither a source file nor content",
                              stage="secrets")
        return self.source.read_bytes()


@dataclass
class SecretBundle:
    host: str
    files: List[SecretFile] = field(default_factory=list)

    def add(self, f: SecretFile) -> None:
        self.files.append(f)

    def paths(self) -> List[str]:
        return [f.remote_path for f in self.files]


class LocalLayout:
    """Where things live inside the operator's secrets directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    # application TLS
    @property
    def app_ca_cert(self) -> Path:
        return self.root / "lightning" / "ca.pem"

    @property
    def app_ca_key(self) -> Path:
        return self.root / "lightning" / "ca.key"

    def app_cert(self, host: str) -> Path:
        return self.root / "lightning" / f"{host}.pem"

    def app_key(self, host: str) -> Path:
        return self.root / "lightning" / f"{host}.key"

    # database TLS
    @property
    def db_ca_cert(self) -> Path:
        return self.root / "database" / "ca.crt"

    @property
    def db_ca_key(self) -> Path:
        return self.root / "database" / "ca.key"

    def db_client_cert(self, user: str) -> Path:
        return self.root / "database" / f"client.{user}.crt"

    def db_client_key(self, user: str) -> Path:
        return self.root / "database" / f"client.{user}.key"

    def db_node_cert(self, host: str) -> Path:
        return self.root / "database" / f"{host}.node.crt"

    def db_node_key(self, host: str) -> Path:
        return self.root / "database" / f"{host}.node.key"

    # host keys
    def sshd_key(self, host: str) -> Path:
        return self.root / "sshd" / host

    @property
    def disk_key(self) -> Path:
        return self.root / "disk_encryption_key"

    # wallet
    @property
    def mnemonic(self) -> Path:
        return self.root / "mnemonic"

    def macaroon(self, name: str) -> Path:
        return self.root / f"{name}.macaroon"
