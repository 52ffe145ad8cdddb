# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/settings.py

from __future__ import annotations

import os
from dataclasses import dataclass


CONFIG_ENV = "LNFLEET_CONFIG"
DEFAULT_CONFIG = "cluster.toml"


@dataclass(frozen=True)
class OrchestratorSettings:
    connect_timeout: float = 20.0
    connect_retries: int = 5
    probe_timeout: float = 30.0
    readiness_timeout: float = 900.0
    backoff_initial: float = 2.0
    backoff_max: float = 30.0
    reboot_timeout: float = 600.0
    parallelism: int = 4


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def load_settings() -> OrchestratorSettings:
    # defaults suit a handful of hosts on a slow link; override via env
    return OrchestratorSettings(
        connect_timeout=_float("LNFLEET_CONNECT_TIMEOUT", 20.0),
        connect_retries=_int("LNFLEET_CONNECT_RETRIES", 5),
        probe_timeout=_float("LNFLEET_PROBE_TIMEOUT", 30.0),
        readiness_timeout=_float("LNFLEET_READINESS_TIMEOUT", 900.0),
        backoff_initial=_float("LNFLEET_BACKOFF_INITIAL", 2.0),
        backoff_max=_float("LNFLEET_BACKOFF_MAX", 30.0),
        reboot_timeout=_float("LNFLEET_REBOOT_TIMEOUT", 600.0),
        parallelism=max(1, _int("LNFLEET_PARALLELISM", 4)),
    )
