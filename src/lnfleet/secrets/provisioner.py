# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/secrets/provisioner.py

from __future__ import annotations

import logging
import posixpath
import secrets
import shlex
from pathlib import Path
from typing import List, Optional, Sequence

from cryptography.hazmat.primitives.asymmetric import ec

from ..config.models import ROLES, HostSpec
from ..errors import RemoteError, SecretError
from ..remote.channel import RemoteChannel
from .bundle import ROOT_UID, SECRETS_ROOT, LocalLayout, SecretBundle, SecretFile
from .certs import (
    CertificateAuthority,
    create_ca,
    issue_leaf,
    load_ca,
    write_pair,
    write_secret_text,
    write_ssh_host_key,
)
from .wallet import ensure_wallet_secrets

log = logging.getLogger("lnfleet")

STAGE = "secrets"
APP_DB_USER = "kld"


class SecretProvisioner:
    """
    Owns the operator-side secrets directory.

    ensure() creates whatever is missing and never overwrites an existing
    file; push() delivers one host's bundle with staged, atomic renames.
    """

    def __init__(self, secret_dir: Path, fleet: Sequence[HostSpec], access_tokens: str = ""):
        self.layout = LocalLayout(Path(secret_dir))
        self.fleet = list(fleet)
        self.access_tokens = access_tokens

    # ------------------------------------------------------------------
    # primaries
    # ------------------------------------------------------------------

    def _primary(self, role: str) -> Optional[str]:
        for h in self.fleet:
            if h.role == role:
                return h.name
        return None

    @property
    def has_database(self) -> bool:
        return self._primary("database") is not None

    def _ca(self, host: HostSpec, *, role: str, common_name: str,
            cert_path: Path, key_path: Path, curve: ec.EllipticCurve) -> CertificateAuthority:
        if cert_path.exists() and key_path.exists():
            return load_ca(cert_path, key_path)
        if cert_path.exists() or key_path.exists():
            raise SecretError(
                f"incomplete CA in {cert_path.parent}: refusing to regenerate over existing files",
                host=host.name, stage=STAGE,
            )
        primary = self._primary(role)
        if host.name != primary:
            raise SecretError(
                f"{role} CA {cert_path} does not exist; it is created when "
                f"the primary host '{primary}' is provisioned",
                host=host.name, stage=STAGE,
            )
        log.info("[%s] creating %s CA in %s", host.name, role, cert_path.parent)
        ca = create_ca(common_name, curve)
        write_pair(ca.cert, ca.key, cert_path, key_path)
        return ca

    def _app_ca(self, host: HostSpec) -> CertificateAuthority:
        return self._ca(host, role="application", common_name="lnfleet application CA",
                        cert_path=self.layout.app_ca_cert, key_path=self.layout.app_ca_key,
                        curve=ec.SECP384R1())

    def _db_ca(self, host: HostSpec) -> CertificateAuthority:
        return self._ca(host, role="database", common_name="lnfleet database CA",
                        cert_path=self.layout.db_ca_cert, key_path=self.layout.db_ca_key,
                        curve=ec.SECP256R1())

    # ------------------------------------------------------------------
    # ensure
    # ------------------------------------------------------------------

    def _leaf(self, host: HostSpec, ca_fn, cert_path: Path, key_path: Path,
              common_name: str, alt_names: List[str], *, server: bool = True) -> None:
        if cert_path.exists() and key_path.exists():
            return
        if cert_path.exists() or key_path.exists():
            raise SecretError(
                f"only one of {cert_path.name} / {key_path.name} exists; "
                "remove it or restore its pair",
                host=host.name, stage=STAGE,
            )
        ca = ca_fn(host)
        cert, key = issue_leaf(ca, common_name, alt_names=alt_names, server=server)
        write_pair(cert, key, cert_path, key_path)
        log.info("[%s] created %s", host.name, cert_path.name)

    def _node_names(self, host: HostSpec) -> List[str]:
        return [host.name, "localhost", "127.0.0.1", "::1", *host.advertised_addresses()]

    def ensure(self, hosts: Sequence[HostSpec]) -> None:
        """Create missing material for *hosts*. Safe to re-run after a partial failure."""
        self.layout.root.mkdir(parents=True, exist_ok=True)

        if not self.layout.disk_key.exists():
            write_secret_text(self.layout.disk_key, secrets.token_hex(32))
            log.info("created disk encryption key %s", self.layout.disk_key)

        # CAs before leaves: the application host's database client cert
        # needs the database CA, whatever order the hosts come in
        for host in hosts:
            if host.name != self._primary(host.role):
                continue
            if host.role == "application":
                self._app_ca(host)
            elif host.role == "database":
                self._db_ca(host)

        for host in hosts:
            sshd = self.layout.sshd_key(host.name)
            if not sshd.exists():
                write_ssh_host_key(sshd, f"root@{host.name}")
                log.info("[%s] created initrd ssh host key", host.name)

            if host.role == "application":
                self._leaf(host, self._app_ca, self.layout.app_cert(host.name),
                           self.layout.app_key(host.name), host.name, self._node_names(host))
                if self.has_database:
                    self._leaf(host, self._db_ca, self.layout.db_client_cert(APP_DB_USER),
                               self.layout.db_client_key(APP_DB_USER), APP_DB_USER, [],
                               server=False)
            elif host.role == "database":
                self._leaf(host, self._db_ca, self.layout.db_node_cert(host.name),
                           self.layout.db_node_key(host.name), "node", self._node_names(host))
                self._leaf(host, self._db_ca, self.layout.db_client_cert("root"),
                           self.layout.db_client_key("root"), "root", [], server=False)

    def ensure_wallet(self) -> None:
        """Operator-side wallet mnemonic and macaroons, delivered to application hosts."""
        ensure_wallet_secrets(self.layout)

    # ------------------------------------------------------------------
    # bundle
    # ------------------------------------------------------------------

    def _source(self, host: HostSpec, path: Path) -> Path:
        if not path.exists():
            raise SecretError(
                f"{path} is missing; run install for this host to create it",
                host=host.name, stage=STAGE,
            )
        return path

    def bundle_for(self, host: HostSpec) -> SecretBundle:
        L = self.layout
        uid = ROLES[host.role].service_uid
        b = SecretBundle(host=host.name)

        def add(remote: str, path: Path, owner: int = uid) -> None:
            b.add(SecretFile(remote_path=remote, owner_uid=owner, source=self._source(host, path)))

        if host.role == "application":
            add("app/ca.pem", L.app_ca_cert)
            add("app/node.pem", L.app_cert(host.name))
            add("app/node.key", L.app_key(host.name))
            if L.mnemonic.exists():
                add("mnemonic", L.mnemonic)
            if self.has_database:
                add("app/database/ca.crt", L.db_ca_cert)
                add(f"app/database/client.{APP_DB_USER}.crt", L.db_client_cert(APP_DB_USER))
                add(f"app/database/client.{APP_DB_USER}.key", L.db_client_key(APP_DB_USER))
        else:
            add("database/ca.crt", L.db_ca_cert)
            add("database/node.crt", L.db_node_cert(host.name))
            add("database/node.key", L.db_node_key(host.name))
            add("database/client.root.crt", L.db_client_cert("root"))
            add("database/client.root.key", L.db_client_key("root"))

        add("sshd_key", L.sshd_key(host.name), ROOT_UID)
        add("disk_encryption_key", L.disk_key, ROOT_UID)
        b.add(SecretFile(remote_path="access-tokens", owner_uid=ROOT_UID,
                         content=f"ACCESS_TOKENS={self.access_tokens}\n"))

        m = host.monitoring
        if m.configured:
            lines = [
                f"MONITORING_URL={m.url or ''}",
                f"MONITORING_USERNAME={m.username or ''}",
                f"MONITORING_PASSWORD={m.password or ''}",
                f"LOG_PUSH_URL={m.log_push_url or ''}",
            ]
            b.add(SecretFile(remote_path="monitoring-credentials", owner_uid=ROOT_UID,
                             content="\n".join(lines) + "\n"))
        return b

    # ------------------------------------------------------------------
    # push
    # ------------------------------------------------------------------

    def push(self, channel: RemoteChannel, bundle: SecretBundle, *, root: str = "/") -> None:
        """
        Deliver *bundle* below <root>/var/lib/secrets.

        Every file is uploaded into a private staging directory first; only
        when all uploads succeeded are they renamed into place by a single
        remote shell invocation, so an interrupted push leaves no partial
        secret at a final path.
        """
        q = shlex.quote
        base = posixpath.join(root, SECRETS_ROOT.lstrip("/"))
        staging = f"{base}/.staging-{secrets.token_hex(6)}"
        stage = "secret-push"

        channel.run(
            f"install -d -m 0711 {q(base)} && rm -rf {q(base)}/.staging-* "
            f"&& install -d -m 0700 {q(staging)}",
            stage=stage,
        )
        try:
            commit = ["set -e"]
            moves = []
            for i, f in enumerate(bundle.files):
                staged = f"{staging}/{i:02d}"
                if f.content is not None:
                    channel.put_text(f.content, staged, mode=0o600)
                else:
                    channel.put_file(f.source, staged, mode=0o600)

                final = posixpath.join(base, f.remote_path)
                parent = posixpath.dirname(final)
                if parent != base:
                    commit.append(
                        f"install -d -m 0750 -o {f.owner_uid} -g {f.owner_uid} {q(parent)}"
                    )
                commit.append(f"chown {f.owner_uid}:{f.owner_uid} {q(staged)}")
                commit.append(f"chmod {f.mode:04o} {q(staged)}")
                moves.append(f"mv -f {q(staged)} {q(final)}")

            channel.run("; ".join(commit + moves), stage=stage)
            log.info("[%s] pushed %d secret files to %s", bundle.host, len(bundle.files), base)
        finally:
            try:
                channel.run(f"rm -rf {q(staging)}", check=False)
            except RemoteError as e:
                log.warning("[%s] could not remove %s: %s", bundle.host, staging, e)
