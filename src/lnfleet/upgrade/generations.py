# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/upgrade/generations.py

from __future__ import annotations

import posixpath
import re
from typing import Iterable, List, Optional

from ..errors import RemoteError
from ..remote.channel import RemoteChannel

PROFILES_DIR = "/nix/var/nix/profiles"
SYSTEM_PROFILE = f"{PROFILES_DIR}/system"

_LINK_RE = re.compile(r"^system-(\d+)-link$")


def _parse(link: str) -> Optional[int]:
    m = _LINK_RE.match(posixpath.basename(link.strip()))
    return int(m.group(1)) if m else None


def current_generation(channel: RemoteChannel) -> int:
    target = channel.output(f"readlink {SYSTEM_PROFILE}", stage="generation")
    gen = _parse(target)
    if gen is None:
        raise RemoteError(f"unexpected system profile target {target!r}",
                          host=channel.name, stage="generation")
    return gen


def list_generations(channel: RemoteChannel) -> List[int]:
    out = channel.output(f"ls -1 {PROFILES_DIR}", stage="generation")
    gens = [_parse(line) for line in out.splitlines()]
    return sorted(g for g in gens if g is not None)


def prior_generation(channel: RemoteChannel) -> Optional[int]:
    """The newest retained generation older than the current one."""
    current = current_generation(channel)
    older = [g for g in list_generations(channel) if g < current]
    return older[-1] if older else None


def booted_current(channel: RemoteChannel) -> bool:
    """True when the running system is the one the profile points at."""
    running = channel.output("readlink -f /run/current-system", stage="verify")
    default = channel.output(f"readlink -f {SYSTEM_PROFILE}", stage="verify")
    return running == default


def switch_to(channel: RemoteChannel, generation: int) -> None:
    channel.run(
        f"nix-env --profile {SYSTEM_PROFILE} --switch-generation {generation} "
        f"&& {SYSTEM_PROFILE}/bin/switch-to-configuration switch",
        stage="rollback",
    )


def collect_garbage(channel: RemoteChannel, keep: Iterable[int]) -> List[int]:
    """
    Delete every system generation except *keep*, then collect the store.

    Called with the pre-update and the new generation, so the next rollback
    lands exactly where the update started, whatever numbers lie between.
    Returns the generations deleted.
    """
    kept = set(keep)
    doomed = [g for g in list_generations(channel) if g not in kept]
    cmd = "nix-collect-garbage"
    if doomed:
        numbers = " ".join(str(g) for g in doomed)
        cmd = f"nix-env --profile {SYSTEM_PROFILE} --delete-generations {numbers} && {cmd}"
    channel.run(cmd, stage="cleanup")
    return doomed
