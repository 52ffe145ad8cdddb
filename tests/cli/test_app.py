import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from lnfleet.cli import app as cli
from lnfleet.drift.fingerprint import HOST_RECORD_PATH
from lnfleet.report import DONE, FAILED, HostOutcome, RunReport
from lnfleet.version import __version__

runner = CliRunner()


@pytest.fixture
def config(tmp_path: Path, example_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("LNFLEET_CONFIG", raising=False)
    p = tmp_path / "cluster.toml"
    shutil.copy(example_path, p)
    return p


class FakeInstall:
    outcomes = []
    raise_interrupt = False
    seen = {}

    def __init__(self, compiler, secrets, machine, **kw):
        FakeInstall.seen = {"options": kw["options"], "flake_dir": compiler.flake_dir}

    def run(self, targets):
        if self.raise_interrupt:
            raise KeyboardInterrupt
        FakeInstall.seen["targets"] = [h.name for h in targets]
        return RunReport(operation="install", outcomes=list(self.outcomes))


def test_version():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_generate_example_matches_shipped_file(example_path):
    result = runner.invoke(cli.app, ["generate-example"])
    assert result.exit_code == 0
    assert result.output == example_path.read_text()


def test_generate_config_writes_descriptors(config, tmp_path):
    out = tmp_path / "generated"
    result = runner.invoke(cli.app, ["--config", str(config), "generate-config", str(out)])
    assert result.exit_code == 0, result.output
    assert (out / "flake.nix").exists()
    assert (out / "kld-00.json").exists()
    assert (out / "sandbox.json").exists()


def test_config_from_environment(config, tmp_path, monkeypatch):
    monkeypatch.setenv("LNFLEET_CONFIG", str(config))
    result = runner.invoke(cli.app, ["generate-config", str(tmp_path / "out")])
    assert result.exit_code == 0, result.output


def test_missing_config_exits_2(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    result = runner.invoke(cli.app, ["--config", str(tmp_path / "nope.toml"), "install", "--yes"])
    assert result.exit_code == 2
    assert "does not exist" in result.output


def test_unknown_host_exits_2(config, monkeypatch):
    monkeypatch.setattr(cli, "InstallOrchestrator", FakeInstall)
    result = runner.invoke(cli.app, ["--config", str(config), "install", "--yes",
                                     "--hosts", "db-99"])
    assert result.exit_code == 2
    assert "unknown host" in result.output


def test_install_reports_failed_hosts(config, monkeypatch):
    FakeInstall.raise_interrupt = False
    FakeInstall.outcomes = [
        HostOutcome(name="db-00", status=DONE, stage="ReadinessWait"),
        HostOutcome(name="kld-00", status=FAILED, stage="ReadinessWait",
                    error="not ready after 900s, failing: application"),
    ]
    monkeypatch.setattr(cli, "InstallOrchestrator", FakeInstall)

    result = runner.invoke(cli.app, ["--config", str(config), "install", "--yes",
                                     "--hosts", "db-00,kld-00", "--no-reboot"])

    assert result.exit_code == 1
    assert "kld-00: ReadinessWait: not ready after 900s" in result.output
    assert FakeInstall.seen["targets"] == ["kld-00", "db-00"]
    assert FakeInstall.seen["options"].no_reboot is True
    assert FakeInstall.seen["flake_dir"] == config.parent / ".lnfleet" / "flake"


def test_install_success_exits_0(config, monkeypatch):
    FakeInstall.raise_interrupt = False
    FakeInstall.outcomes = [HostOutcome(name="db-00", status=DONE, stage="ReadinessWait")]
    monkeypatch.setattr(cli, "InstallOrchestrator", FakeInstall)
    result = runner.invoke(cli.app, ["--config", str(config), "install", "--yes"])
    assert result.exit_code == 0, result.output


def test_install_asks_for_confirmation(config, monkeypatch):
    monkeypatch.setattr(cli, "InstallOrchestrator", FakeInstall)
    result = runner.invoke(cli.app, ["--config", str(config), "install"], input="n\n")
    assert result.exit_code != 0
    assert "Erase all disks" in result.output


def test_interrupt_exits_130(config, monkeypatch):
    FakeInstall.raise_interrupt = True
    monkeypatch.setattr(cli, "InstallOrchestrator", FakeInstall)
    try:
        result = runner.invoke(cli.app, ["--config", str(config), "install", "--yes"])
    finally:
        FakeInstall.raise_interrupt = False
    assert result.exit_code == 130


def test_system_info_prints_labeled_lines(config, monkeypatch, fake_channel_cls):
    def handler(cmd):
        if cmd == f"cat {HOST_RECORD_PATH}":
            return 0, '{"revision": "abc", "revision_date": "2026-01-01", "digest": "ff"}', ""
        if "--version" in cmd or "version --build-tag" in cmd:
            return 0, "v1\n", ""
        return None

    monkeypatch.setattr(cli, "RemoteChannel", lambda host, ctx=None: fake_channel_cls(host, handler))
    result = runner.invoke(cli.app, ["--config", str(config), "system-info", "--hosts", "db-00"])
    assert result.exit_code == 0, result.output
    assert "[db-00]" in result.output
    assert "  revision: abc" in result.output
    assert "  database version: v1" in result.output
    assert "application version: unavailable" in result.output


def test_ssh_runs_command_on_each_host(config, monkeypatch, fake_channel_cls):
    channels = []

    def make(host, ctx=None):
        ch = fake_channel_cls(host, lambda cmd: (0, f"up on {host.name}\n", ""))
        channels.append(ch)
        return ch

    monkeypatch.setattr(cli, "RemoteChannel", make)
    result = runner.invoke(cli.app, ["--config", str(config), "ssh", "--hosts", "db-00,db-01",
                                     "--", "uptime", "-p"])
    assert result.exit_code == 0, result.output
    assert "[db-01] up on db-01" in result.output
    assert [c.calls for c in channels] == [["uptime -p"], ["uptime -p"]]


def test_reboot_uses_detached_command(config, monkeypatch, fake_channel_cls):
    channels = []

    def make(host, ctx=None):
        ch = fake_channel_cls(host)
        channels.append(ch)
        return ch

    monkeypatch.setattr(cli, "RemoteChannel", make)
    result = runner.invoke(cli.app, ["--config", str(config), "reboot", "--hosts", "kld-00"])
    assert result.exit_code == 0, result.output
    assert channels[0].calls == ["nohup reboot &>/dev/null & exit"]


def test_fingerprint_check_without_record_fails(tmp_path):
    result = runner.invoke(cli.app, ["fingerprint", "check", "--root", str(tmp_path)])
    assert result.exit_code == 1
    assert "run generate first" in result.output


def test_install_creates_wallet_secrets_locally(config, monkeypatch):
    FakeInstall.raise_interrupt = False
    FakeInstall.outcomes = [HostOutcome(name="kld-00", status=DONE, stage="ReadinessWait")]
    monkeypatch.setattr(cli, "InstallOrchestrator", FakeInstall)

    result = runner.invoke(cli.app, ["--config", str(config), "install", "--yes",
                                     "--hosts", "kld-00"])

    assert result.exit_code == 0, result.output
    secrets = config.parent / "secrets"
    assert len((secrets / "mnemonic").read_text().split()) == 24
    assert (secrets / "admin.macaroon").exists()


def test_install_can_leave_wallet_secrets_to_the_host(config, monkeypatch):
    FakeInstall.raise_interrupt = False
    FakeInstall.outcomes = [HostOutcome(name="kld-00", status=DONE, stage="ReadinessWait")]
    monkeypatch.setattr(cli, "InstallOrchestrator", FakeInstall)

    result = runner.invoke(cli.app, ["--config", str(config), "install", "--yes",
                                     "--hosts", "kld-00", "--generate-secret-on-remote"])

    assert result.exit_code == 0, result.output
    assert not (config.parent / "secrets" / "mnemonic").exists()
