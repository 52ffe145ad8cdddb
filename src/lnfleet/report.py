# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/report.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

DONE = "DONE"
FAILED = "FAILED"


@dataclass
class HostOutcome:
    name: str
    status: str                 # "DONE" | "FAILED"
    stage: str                  # last stage entered
    error: Optional[str] = None
    duration_ms: int = 0
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DONE


@dataclass
class RunReport:
    operation: str
    outcomes: List[HostOutcome] = field(default_factory=list)

    def add(self, outcome: HostOutcome) -> None:
        self.outcomes.append(outcome)

    def get(self, name: str) -> Optional[HostOutcome]:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None

    def failed(self) -> List[HostOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed()

    def summary(self) -> str:
        done = sum(1 for o in self.outcomes if o.status == DONE)
        return f"{self.operation}: DONE={done} FAILED={len(self.failed())}"
