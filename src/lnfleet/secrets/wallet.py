# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/secrets/wallet.py

from __future__ import annotations

import base64
import hashlib
import logging
from pathlib import Path
from typing import Dict

from mnemonic import Mnemonic
from pymacaroons import Macaroon
from pymacaroons.macaroon import MACAROON_V2

from ..errors import SecretError
from .bundle import LocalLayout
from .certs import write_secret_bytes, write_secret_text

log = logging.getLogger("lnfleet")

STAGE = "secrets"
STRENGTH = 256          # 24 words
MACAROON_KEY_INFO = b"macaroon/0"

ROLE_CAVEATS = {
    "admin": "roles = admin|readonly",
    "readonly": "roles = readonly",
}


def macaroon_root_key(words: str) -> bytes:
    """sha256(BIP-39 seed || "macaroon/0"), the key the application verifies against."""
    h = hashlib.sha256()
    h.update(Mnemonic.to_seed(words, passphrase=""))
    h.update(MACAROON_KEY_INFO)
    return h.digest()


def _serialized(m: Macaroon) -> str:
    text = m.serialize()
    return text.decode("ascii") if isinstance(text, bytes) else text


def macaroons_for(words: str) -> Dict[str, str]:
    """URL-safe base64 V2 macaroons per role. Deterministic for a given mnemonic."""
    key = macaroon_root_key(words)
    out: Dict[str, str] = {}
    for identifier, caveat in ROLE_CAVEATS.items():
        m = Macaroon(location="", identifier=identifier, key=key, version=MACAROON_V2)
        m.add_first_party_caveat(caveat)
        out[identifier] = _serialized(m)
    return out


def _raw(serialized: str) -> bytes:
    return base64.urlsafe_b64decode(serialized + "=" * (-len(serialized) % 4))


def read_mnemonic(path: Path) -> str:
    words = " ".join(path.read_text().split())
    if not Mnemonic("english").check(words):
        raise SecretError(f"{path} is not a valid BIP-39 mnemonic; refusing to derive macaroons",
                          stage=STAGE)
    return words


def ensure_wallet_secrets(layout: LocalLayout) -> None:
    """
    Create the wallet mnemonic and the API macaroons derived from it.

    Nothing existing is overwritten. A missing macaroon is derived again
    from the mnemonic on disk, so the files always belong to that mnemonic.
    access.macaroon is the admin macaroon in binary form.
    """
    layout.root.mkdir(parents=True, exist_ok=True)
    if layout.mnemonic.exists():
        words = read_mnemonic(layout.mnemonic)
    else:
        words = Mnemonic("english").generate(strength=STRENGTH)
        write_secret_text(layout.mnemonic, words)
        log.warning("created wallet mnemonic %s; back it up offline", layout.mnemonic)

    macaroons = macaroons_for(words)
    wanted = {
        layout.macaroon("admin"): macaroons["admin"].encode(),
        layout.macaroon("readonly"): macaroons["readonly"].encode(),
        layout.macaroon("access"): _raw(macaroons["admin"]),
    }
    for path, data in wanted.items():
        if not path.exists():
            write_secret_bytes(path, data)
            log.info("created %s", path.name)
