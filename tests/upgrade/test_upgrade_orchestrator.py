import dataclasses
from pathlib import Path

import pytest

from lnfleet.errors import ProvisionError, ScheduleOverlapError
from lnfleet.image.compiler import DESCRIPTOR_PATH, descriptor_json
from lnfleet.observers.events import GenerationChanged, UpgradeWaveStarted
from lnfleet.secrets.provisioner import SecretProvisioner
from lnfleet.upgrade.handoff import CAPABILITY_PROBE, REBOOT_COMMAND
from lnfleet.upgrade.orchestrator import BOOT_ID, UpgradeOrchestrator


class HostState:
    """Just enough of a NixOS host to walk through generation changes."""

    def __init__(self, host, generations=(5, 6)):
        self.host = host
        self.generations = list(generations)
        self.current = self.generations[-1]
        self.running = self.current
        self.boots = 1
        self.descriptor = descriptor_json(host)

    def new_generation(self):
        self.generations.append(self.generations[-1] + 1)
        self.current = self.generations[-1]

    def handle(self, cmd):
        if cmd == "readlink /nix/var/nix/profiles/system":
            return 0, f"system-{self.current}-link\n", ""
        if cmd == "ls -1 /nix/var/nix/profiles":
            return 0, "".join(f"system-{g}-link\n" for g in self.generations), ""
        if cmd == "readlink -f /run/current-system":
            return 0, f"/nix/store/gen-{self.running}\n", ""
        if cmd == "readlink -f /nix/var/nix/profiles/system":
            return 0, f"/nix/store/gen-{self.current}\n", ""
        if cmd == BOOT_ID:
            return 0, f"boot-{self.boots}\n", ""
        if cmd == CAPABILITY_PROBE:
            return 1, "", ""
        if cmd == REBOOT_COMMAND:
            self.boots += 1
            self.running = self.current
            return 0, "", ""
        if "--switch-generation" in cmd:
            self.current = int(cmd.split("--switch-generation ")[1].split()[0])
            self.running = self.current
            return 0, "", ""
        if "--delete-generations" in cmd:
            doomed = cmd.split("--delete-generations ")[1].split(" && ")[0].split()
            self.generations = [g for g in self.generations if str(g) not in doomed]
            return 0, "", ""
        if cmd == f"cat {DESCRIPTOR_PATH}":
            return 0, self.descriptor, ""
        if cmd.startswith("cockroach node status"):
            return 0, f"1\t{self.host.name}:26257\ttrue\n", ""
        return None


class FakeCompiler:
    def __init__(self, states, fail=()):
        self.states = states
        self.fail = set(fail)
        self.switched = []

    def prepare(self):
        pass

    def switch(self, host, *, action="boot"):
        if host.name in self.fail:
            raise ProvisionError("nixos-rebuild failed (rc=1)", host=host.name, stage="activate")
        self.switched.append((host.name, action))
        self.states[host.name].new_generation()

    def dry_activate(self, host):
        return ""


def _setup(fleet, tmp_path: Path, fake_channel_cls, fast_ctx, capture, *, fail=(), gens=(5, 6)):
    states = {h.name: HostState(h, gens) for h in fleet}
    channels = {}

    def factory(host, user):
        ch = fake_channel_cls(host, states[host.name].handle)
        channels[host.name] = ch
        return ch

    secrets = SecretProvisioner(tmp_path / "secrets", fleet)
    secrets.ensure(fleet)
    compiler = FakeCompiler(states, fail)
    orch = UpgradeOrchestrator(compiler, secrets, fleet, ctx=fast_ctx, observers=[capture],
                               channel_factory=factory, sleep=lambda s: None)
    return orch, states, channels, compiler


def test_dry_update_leaves_generation_unchanged(fleet, tmp_path, fake_channel_cls, fast_ctx, capture):
    orch, states, channels, _ = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture)
    states["db-00"].descriptor = states["db-00"].descriptor.replace('"disks"', '"old_disks"')

    report = orch.dry_update(fleet)

    assert report.ok
    assert all(s.current == 6 for s in states.values())
    assert "descriptor unchanged" == report.get("db-01").detail
    assert "+" in report.get("db-00").detail
    assert not any("switch-to-configuration" in c for ch in channels.values() for c in ch.calls)


def test_dry_update_detects_generation_change(fleet, tmp_path, fake_channel_cls, fast_ctx, capture):
    orch, states, _, compiler = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture)
    compiler.dry_activate = lambda host: states[host.name].new_generation()

    report = orch.dry_update([fleet[1]])

    outcome = report.get("db-00")
    assert not outcome.ok
    assert "generation changed during dry-update" in outcome.error


def test_update_advances_every_host(fleet, tmp_path, fake_channel_cls, fast_ctx, capture):
    orch, states, channels, compiler = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture)

    report = orch.update(fleet)

    assert report.ok, report.failed()
    assert all(s.current == 7 and s.running == 7 for s in states.values())
    assert compiler.switched[0][1] == "boot"
    changed = [e for e in capture.events if isinstance(e, GenerationChanged)]
    assert sorted((e.host, e.before, e.after) for e in changed) == [
        ("db-00", 6, 7), ("db-01", 6, 7), ("kld-00", 6, 7)]
    waves = [e.hosts for e in capture.events if isinstance(e, UpgradeWaveStarted)]
    assert waves == [["kld-00", "db-00"], ["db-01"]]
    db1 = channels["db-01"].calls
    assert any("mv -f" in c for c in db1)
    assert all(s.generations == [6, 7] for s in states.values())


def test_failed_database_stops_later_database(fleet, tmp_path, fake_channel_cls, fast_ctx, capture):
    orch, states, _, _ = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture,
                                fail={"db-00"})

    report = orch.update(fleet)

    assert report.get("kld-00").ok
    assert report.get("db-00").stage == "Activate"
    assert "not started" in report.get("db-01").error
    assert states["db-01"].current == 6


def test_overlapping_windows_abort_before_remote_calls(fleet, tmp_path, fake_channel_cls,
                                                       fast_ctx, capture):
    clash = [fleet[0], fleet[1], dataclasses.replace(fleet[2], upgrade_schedule="*-*-* 2:12:00")]
    orch, _, channels, _ = _setup(clash, tmp_path, fake_channel_cls, fast_ctx, capture)
    with pytest.raises(ScheduleOverlapError):
        orch.update(clash)
    assert channels == {}


def test_rollback_restores_prior_generation(fleet, tmp_path, fake_channel_cls, fast_ctx, capture):
    orch, states, _, _ = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture)

    report = orch.rollback([fleet[1]])

    assert report.ok
    assert states["db-00"].current == 5
    assert report.get("db-00").detail == "generation 5"


def test_rollback_without_prior_generation(fleet, tmp_path, fake_channel_cls, fast_ctx, capture):
    orch, states, _, _ = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture, gens=(6,))

    report = orch.rollback([fleet[1]])

    outcome = report.get("db-00")
    assert not outcome.ok
    assert "no generation older than 6" in outcome.error
    assert states["db-00"].current == 6


def test_rollback_after_update_restores_pre_update_generation(fleet, tmp_path, fake_channel_cls,
                                                              fast_ctx, capture):
    orch, states, _, _ = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture)
    db0 = fleet[1]

    assert orch.update([db0]).ok
    assert states["db-00"].current == 7

    report = orch.rollback([db0])

    assert report.ok, report.failed()
    assert states["db-00"].current == 6
    assert states["db-00"].running == 6


def test_rollback_update_rollback_returns_to_update_start(fleet, tmp_path, fake_channel_cls,
                                                         fast_ctx, capture):
    orch, states, _, _ = _setup(fleet, tmp_path, fake_channel_cls, fast_ctx, capture)
    db0 = fleet[1]

    assert orch.rollback([db0]).ok
    assert states["db-00"].current == 5

    assert orch.update([db0]).ok
    # 6 is newer than the pre-update generation but must not survive cleanup
    assert states["db-00"].generations == [5, 7]

    report = orch.rollback([db0])

    assert report.ok, report.failed()
    assert states["db-00"].current == 5
    assert report.get("db-00").detail == "generation 5"
