# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/drift/fingerprint.py

from __future__ import annotations

import hashlib
import json
import logging
import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from ..errors import DriftMismatchError, LnfleetError

log = logging.getLogger("lnfleet")

FINGERPRINT_FILE = "fingerprint.json"
# where the compiled image installs the record on every host
HOST_RECORD_PATH = "/etc/lnfleet/system-info.json"

_EXCLUDED_PARTS = {".git", "__pycache__", "build", "dist"}

Lister = Callable[[Path], List[str]]
RevisionFn = Callable[[Path], Tuple[str, str]]


@dataclass(frozen=True)
class UpgradeRecord:
    revision: str
    revision_date: str
    digest: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_json(cls, text: str) -> "UpgradeRecord":
        data = json.loads(text)
        return cls(
            revision=str(data["revision"]),
            revision_date=str(data["revision_date"]),
            digest=str(data["digest"]),
        )


def is_excluded(path: str) -> bool:
    """Build artifacts, VCS metadata and the fingerprint itself do not count."""
    if path == FINGERPRINT_FILE:
        return True
    parts = path.split("/")
    if parts[0] == "result" or parts[0].startswith("result-"):
        return True
    for part in parts:
        if part in _EXCLUDED_PARTS or part.endswith(".egg-info"):
            return True
    return path.endswith(".pyc")


def _git(root: Path, *args: str) -> str:
    try:
        proc = subprocess.run(
            ["git", *args], cwd=str(root), capture_output=True, text=True, check=True
        )
    except FileNotFoundError:
        raise LnfleetError("git not found in PATH", stage="fingerprint") from None
    except subprocess.CalledProcessError as e:
        raise LnfleetError(
            f"git {' '.join(args)} failed in {root}: {e.stderr.strip()}", stage="fingerprint"
        ) from e
    return proc.stdout


def git_tracked_files(root: Path) -> List[str]:
    return [p for p in _git(root, "ls-files", "-z").split("\0") if p]


def git_revision(root: Path) -> Tuple[str, str]:
    rev = _git(root, "rev-parse", "HEAD").strip()
    date = _git(root, "log", "-1", "--format=%cI").strip()
    return rev, date


def tracked_files(root: Path, lister: Lister = git_tracked_files) -> List[str]:
    return sorted(p for p in lister(root) if not is_excluded(p))


def _file_hash(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            h.update(chunk)
    return h.hexdigest()


def compute_digest(root: Path, files: Iterable[str], revision: str, revision_date: str) -> str:
    """
    sha256 over "<file sha256>  <path>" lines in sorted path order, followed
    by the revision and revision-date lines. The path is part of the line so
    a rename changes the digest even when the bytes do not.
    """
    lines = []
    for rel in sorted(files):
        p = Path(root) / rel
        try:
            lines.append(f"{_file_hash(p)}  {rel}\n")
        except FileNotFoundError:
            raise DriftMismatchError(
                f"tracked file {rel} is missing from the working tree", stage="fingerprint"
            ) from None
    lines.append(f"revision {revision}\n")
    lines.append(f"revision-date {revision_date}\n")
    return hashlib.sha256("".join(lines).encode()).hexdigest()


def compute_record(
    root: Path,
    *,
    lister: Lister = git_tracked_files,
    revision_fn: RevisionFn = git_revision,
) -> UpgradeRecord:
    root = Path(root)
    revision, date = revision_fn(root)
    digest = compute_digest(root, tracked_files(root, lister), revision, date)
    return UpgradeRecord(revision=revision, revision_date=date, digest=digest)


def read_record(root: Path) -> Optional[UpgradeRecord]:
    p = Path(root) / FINGERPRINT_FILE
    if not p.exists():
        return None
    try:
        return UpgradeRecord.from_json(p.read_text())
    except (ValueError, KeyError) as e:
        raise DriftMismatchError(f"{p} is not a valid fingerprint record: {e}",
                                 stage="fingerprint") from e


def generate(
    root: Path,
    *,
    lister: Lister = git_tracked_files,
    revision_fn: RevisionFn = git_revision,
) -> UpgradeRecord:
    """Compute the record for the current tree and write it to fingerprint.json."""
    record = compute_record(root, lister=lister, revision_fn=revision_fn)
    (Path(root) / FINGERPRINT_FILE).write_text(record.to_json())
    log.info("fingerprint %s for revision %s", record.digest, record.revision)
    return record


def check(
    root: Path,
    *,
    lister: Lister = git_tracked_files,
    revision_fn: RevisionFn = git_revision,
) -> UpgradeRecord:
    """Recompute and compare with the recorded value; raises DriftMismatchError."""
    recorded = read_record(root)
    if recorded is None:
        raise DriftMismatchError(f"no {FINGERPRINT_FILE} in {root}; run generate first",
                                 stage="fingerprint")
    current = compute_record(root, lister=lister, revision_fn=revision_fn)
    if current != recorded:
        raise DriftMismatchError(
            f"fingerprint mismatch: recorded {recorded.digest} ({recorded.revision}), "
            f"tree is {current.digest} ({current.revision})",
            stage="fingerprint",
        )
    return current
