# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/observers/events.py

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one invocation
    cluster: str      # description file the run was started with

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(cluster: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run, fresh timestamp."""
    return new_ctx(ctx["cluster"], ctx["run_id"])


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    order: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Per-host state machine
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostStageEntered(BaseEvent):
    host: str
    operation: str    # install / update / rollback / dry-update
    stage: str

@dataclass(frozen=True)
class HostSucceeded(BaseEvent):
    host: str
    operation: str
    duration_ms: int

@dataclass(frozen=True)
class HostFailed(BaseEvent):
    host: str
    operation: str
    stage: str
    error: str

@dataclass(frozen=True)
class SecretsPushed(BaseEvent):
    host: str
    files: int

@dataclass(frozen=True)
class ReadinessProbed(BaseEvent):
    host: str
    attempt: int
    ok: bool
    detail: Optional[str] = None


# ---------------------------------------------------------------------
# Upgrades
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class UpgradeWaveStarted(BaseEvent):
    wave: int
    hosts: List[str]

@dataclass(frozen=True)
class GenerationChanged(BaseEvent):
    host: str
    before: int
    after: int

@dataclass(frozen=True)
class WindowOverrun(BaseEvent):
    host: str
    window_s: int
    elapsed_s: int


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunSummary(BaseEvent):
    operation: str
    ok: int
    failed: int
