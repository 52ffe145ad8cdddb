# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/observers/console.py
from __future__ import annotations

import typer

from .events import BaseEvent

_SKIP = ("ts", "run_id", "cluster")


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in _SKIP)
        typer.echo(f"[{d['ts']}] {k} run={d['run_id']} {data}", err=True)
