# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/config/loader.py

from __future__ import annotations

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..errors import ConfigError
from .models import ADDITIVE_FIELDS, ClusterDescription

log = logging.getLogger("lnfleet")

SECRETS_FILE_ENV = "LNFLEET_SECRETS_FILE"

_ENV_REF = re.compile(r"\$\{([^}^{]+)\}")


def _expand_env_vars(value: str) -> str:
    # unknown references are left untouched
    return _ENV_REF.sub(lambda m: os.getenv(m.group(1), m.group(0)), value)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def overlay(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Layer one host's fields over the defaults.

    Scalars: the override wins when present.
    Lists: the override replaces the default, except for ADDITIVE_FIELDS
    which append (defaults first, duplicates dropped).
    Neither input is mutated.
    """
    merged: Dict[str, Any] = dict(defaults)
    for key, value in override.items():
        if value is None:
            continue
        if key in ADDITIVE_FIELDS and isinstance(value, list):
            base = list(merged.get(key) or [])
            merged[key] = base + [v for v in value if v not in base]
        else:
            merged[key] = value
    return merged


def _find_secrets_file(config_path: Path) -> Optional[Path]:
    """
    Locate an optional secrets overlay using this priority:

    1. LNFLEET_SECRETS_FILE environment variable (explicit override)
    2. <config stem>.secrets.toml next to the cluster description
    """
    env = os.environ.get(SECRETS_FILE_ENV)
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("%s=%s does not exist, skipping", SECRETS_FILE_ENV, env)
        return None

    p = config_path.with_name(f"{config_path.stem}.secrets.toml")
    if p.is_file():
        return p
    return None


def _load_toml(path: Path) -> dict:
    """Load a TOML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except FileNotFoundError:
        raise ConfigError(f"cluster description {path} does not exist") from None
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    try:
        return tomllib.loads(_expand_env_vars(raw))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e


def _format_validation_error(err: ValidationError) -> str:
    parts = []
    for item in err.errors():
        loc = ".".join(str(x) for x in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)


def load_description(path: str | Path) -> ClusterDescription:
    """
    Load and validate a cluster description.

    Passwords and tokens may live in a separate ``<name>.secrets.toml``
    (or the file named by ``LNFLEET_SECRETS_FILE``) whose structure mirrors
    the description; it is deep-merged before validation. ``${ENV_VAR}``
    placeholders are resolved in both files.

    ``global.secret_directory`` is returned as an absolute path, resolved
    against the description file's directory.
    """
    path = Path(path)
    data = _load_toml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_toml(secrets_path))

    try:
        desc = ClusterDescription.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{path}: {_format_validation_error(e)}") from e

    secret_dir = Path(desc.global_.secret_directory)
    if not secret_dir.is_absolute():
        secret_dir = (path.resolve().parent / secret_dir)
    desc.global_.secret_directory = str(secret_dir)
    return desc
