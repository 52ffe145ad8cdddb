# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/lnfleet/cli/app.py
from __future__ import annotations

import subprocess
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import typer

from lnfleet.config.example import generate_example
from lnfleet.config.loader import load_description
from lnfleet.config.models import ClusterDescription, HostSpec
from lnfleet.config.resolver import resolve
from lnfleet.drift import fingerprint
from lnfleet.drift.system_info import system_info
from lnfleet.errors import ConfigError, LnfleetError
from lnfleet.image.compiler import SystemImageCompiler
from lnfleet.install.orchestrator import InstallOrchestrator
from lnfleet.install.provision import DEFAULT_KEXEC_URL, BareMetalProvisioner, InstallOptions
from lnfleet.logging.log import init_logging
from lnfleet.observers.console import ConsoleObserver
from lnfleet.observers.events import new_ctx
from lnfleet.observers.jsonfile import JsonFileObserver
from lnfleet.observers.logger import LoggerObserver
from lnfleet.remote.channel import RemoteChannel
from lnfleet.remote.filter import filter_hosts, parse_host_filter
from lnfleet.remote.unlock import unlock as unlock_host
from lnfleet.report import RunReport
from lnfleet.secrets.provisioner import SecretProvisioner
from lnfleet.settings import CONFIG_ENV, DEFAULT_CONFIG, load_settings
from lnfleet.upgrade.orchestrator import UpgradeOrchestrator
from lnfleet.utils.execution import ExecutionContext
from lnfleet.version import __version__


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Lifecycle CLI for a Lightning node and its database quorum",
                  no_args_is_help=True)
fingerprint_app = typer.Typer(help="Record and check the deployment repository fingerprint")
app.add_typer(fingerprint_app, name="fingerprint")

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

REBOOT_COMMAND = "nohup reboot &>/dev/null & exit"

HOSTS_HELP = "Comma-separated host names; all hosts when omitted"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lnfleet {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Path = typer.Option(
        Path(DEFAULT_CONFIG), "--config", envvar=CONFIG_ENV, help="Cluster description (TOML)"
    ),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Print the version"
    ),
) -> None:
    ctx.obj = config


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

@dataclass
class Session:
    """Everything a command needs after the description has been loaded."""

    config: Path
    desc: ClusterDescription
    fleet: List[HostSpec]
    targets: List[HostSpec]
    ctx: ExecutionContext
    observers: list
    run_ctx: dict

    @property
    def secrets(self) -> SecretProvisioner:
        g = self.desc.global_
        return SecretProvisioner(Path(g.secret_directory), self.fleet, g.access_tokens)

    def compiler(self) -> SystemImageCompiler:
        return SystemImageCompiler(
            self.desc.global_,
            self.fleet,
            flake_dir(self.config),
            record=fingerprint.read_record(self.config.parent),
            ctx=self.ctx,
        )


def flake_dir(config: Path) -> Path:
    """Generated flake lives next to the description, outside version control."""
    return config.parent / ".lnfleet" / "flake"


@contextmanager
def _guard() -> Iterator[None]:
    """Map library errors onto exit codes; nothing below the CLI prints."""
    try:
        yield
    except ConfigError as e:
        typer.secho(f"configuration error: {e}", err=True, fg=typer.colors.RED)
        raise typer.Exit(EXIT_CONFIG)
    except LnfleetError as e:
        typer.secho(str(e), err=True, fg=typer.colors.RED)
        raise typer.Exit(EXIT_FAILED)
    except KeyboardInterrupt:
        typer.secho("interrupted", err=True, fg=typer.colors.YELLOW)
        raise typer.Exit(EXIT_INTERRUPTED)


def _load(ctx: typer.Context, hosts: Optional[str], debug: bool) -> Session:
    config: Path = ctx.obj or Path(DEFAULT_CONFIG)
    desc = load_description(config)
    fleet = resolve(desc)
    targets = filter_hosts(fleet, parse_host_filter(hosts))

    logger, run_id, log_path = init_logging(verbose=debug)
    observers: list = [
        LoggerObserver(logger),
        JsonFileObserver(Path.home() / ".lnfleet" / "events" / f"{run_id}.jsonl"),
    ]
    if debug:
        observers.append(ConsoleObserver())
    logger.info("log file %s", log_path)

    return Session(
        config=config,
        desc=desc,
        fleet=fleet,
        targets=targets,
        ctx=ExecutionContext(debug=debug, settings=load_settings()),
        observers=observers,
        run_ctx=new_ctx(cluster=str(config), run_id=run_id),
    )


def _confirm(action: str, targets: List[HostSpec], yes: bool) -> None:
    if yes:
        return
    names = ", ".join(h.name for h in targets)
    typer.confirm(f"{action} {names}?", abort=True)


def _exit_with(report: RunReport) -> None:
    for o in report.outcomes:
        if o.ok and o.detail:
            typer.echo(f"{o.name}: {o.detail}")
    failed = report.failed()
    for o in failed:
        typer.secho(f"{o.name}: {o.stage}: {o.error}", err=True, fg=typer.colors.RED)
    if failed:
        raise typer.Exit(EXIT_FAILED)


# ------------------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------------------

@app.command("generate-example")
def generate_example_cmd() -> None:
    """Print an example cluster description."""
    typer.echo(generate_example(), nl=False)


@app.command("generate-config")
def generate_config(
    ctx: typer.Context,
    directory: Path = typer.Argument(..., help="Where to write flake.nix and the descriptors"),
) -> None:
    """Write the generated flake and per-host descriptors. No host is contacted."""
    with _guard():
        config: Path = ctx.obj or Path(DEFAULT_CONFIG)
        desc = load_description(config)
        fleet = resolve(desc)
        compiler = SystemImageCompiler(desc.global_, fleet, directory,
                                       record=fingerprint.read_record(config.parent))
        for path in compiler.write_flake(directory):
            typer.echo(str(path))


# ------------------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------------------

@app.command()
def install(
    ctx: typer.Context,
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation"),
    debug: bool = typer.Option(False, "--debug", help="Stream tool output to the console"),
    kexec_url: str = typer.Option(DEFAULT_KEXEC_URL, "--kexec-url", help="Installer image"),
    no_reboot: bool = typer.Option(False, "--no-reboot", help="Stay in the installer"),
    generate_secret_on_remote: bool = typer.Option(
        False, "--generate-secret-on-remote",
        help="Let the application create its wallet mnemonic and macaroons on first start",
    ),
) -> None:
    """Wipe and install hosts from scratch."""
    with _guard():
        s = _load(ctx, hosts, debug)
        _confirm("Erase all disks and install", s.targets, yes)
        secrets = s.secrets
        if not generate_secret_on_remote and any(h.role == "application" for h in s.targets):
            secrets.ensure_wallet()
        compiler = s.compiler()
        machine = BareMetalProvisioner(compiler, secrets.layout.disk_key, ctx=s.ctx)
        options = InstallOptions(kexec_url=kexec_url, debug=debug, no_reboot=no_reboot)
        report = InstallOrchestrator(
            compiler, secrets, machine,
            ctx=s.ctx, options=options, observers=s.observers, run_ctx=s.run_ctx,
        ).run(s.targets)
    _exit_with(report)


def _upgrader(s: Session) -> UpgradeOrchestrator:
    return UpgradeOrchestrator(
        s.compiler(), s.secrets, s.fleet,
        ctx=s.ctx, observers=s.observers, run_ctx=s.run_ctx,
    )


@app.command("dry-update")
def dry_update(
    ctx: typer.Context,
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    debug: bool = typer.Option(False, "--debug"),
) -> None:
    """Show what an update would change without activating it."""
    with _guard():
        s = _load(ctx, hosts, debug)
        report = _upgrader(s).dry_update(s.targets)
    _exit_with(report)


@app.command()
def update(
    ctx: typer.Context,
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation"),
    debug: bool = typer.Option(False, "--debug"),
) -> None:
    """Activate a new generation, one host per role at a time."""
    with _guard():
        s = _load(ctx, hosts, debug)
        _confirm("Update", s.targets, yes)
        report = _upgrader(s).update(s.targets)
    _exit_with(report)


@app.command()
def rollback(
    ctx: typer.Context,
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation"),
    debug: bool = typer.Option(False, "--debug"),
) -> None:
    """Switch hosts back to their previous generation."""
    with _guard():
        s = _load(ctx, hosts, debug)
        _confirm("Roll back", s.targets, yes)
        report = _upgrader(s).rollback(s.targets)
    _exit_with(report)


# ------------------------------------------------------------------------------
# Remote helpers
# ------------------------------------------------------------------------------

def _each_host(s: Session, fn) -> List[Tuple[str, LnfleetError]]:
    """Run *fn(host, channel)* host by host; collect failures instead of stopping."""
    failures: List[Tuple[str, LnfleetError]] = []
    for host in s.targets:
        try:
            with RemoteChannel(host, ctx=s.ctx) as ch:
                fn(host, ch)
        except LnfleetError as e:
            failures.append((host.name, e))
    return failures


def _report_failures(failures: List[Tuple[str, LnfleetError]]) -> None:
    for name, e in failures:
        typer.secho(f"{name}: {e.stage or '-'}: {e.message}", err=True, fg=typer.colors.RED)
    if failures:
        raise typer.Exit(EXIT_FAILED)


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def ssh(
    ctx: typer.Context,
    command: Optional[List[str]] = typer.Argument(None, help="Command to run after --"),
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    debug: bool = typer.Option(False, "--debug"),
) -> None:
    """Run a command on hosts, or open a shell on a single host."""
    with _guard():
        s = _load(ctx, hosts, debug)
        if not command:
            if len(s.targets) != 1:
                raise typer.BadParameter("an interactive session needs exactly one host",
                                         param_hint="--hosts")
            host = s.targets[0]
            rc = subprocess.call(["ssh", f"root@{host.ssh_hostname}"])
            raise typer.Exit(rc)

        cmd = " ".join(command)
        nonzero: List[str] = []

        def _run(host: HostSpec, ch: RemoteChannel) -> None:
            rc, out, err = ch.run(cmd, check=False, stage="ssh")
            for line in out.splitlines():
                typer.echo(f"[{host.name}] {line}")
            for line in err.splitlines():
                typer.echo(f"[{host.name}] {line}", err=True)
            if rc != 0:
                nonzero.append(host.name)

        failures = _each_host(s, _run)
    _report_failures(failures)
    if nonzero:
        typer.secho(f"command failed on: {', '.join(nonzero)}", err=True, fg=typer.colors.RED)
        raise typer.Exit(EXIT_FAILED)


@app.command()
def reboot(
    ctx: typer.Context,
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    debug: bool = typer.Option(False, "--debug"),
) -> None:
    """Reboot hosts without waiting for them to return."""
    with _guard():
        s = _load(ctx, hosts, debug)

        def _reboot(host: HostSpec, ch: RemoteChannel) -> None:
            ch.run(REBOOT_COMMAND, check=False, stage="reboot")
            typer.echo(f"{host.name}: reboot requested")

        failures = _each_host(s, _reboot)
    _report_failures(failures)


@app.command("system-info")
def system_info_cmd(
    ctx: typer.Context,
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    debug: bool = typer.Option(False, "--debug"),
) -> None:
    """Show the deployed revision and component versions."""
    with _guard():
        s = _load(ctx, hosts, debug)
        local = fingerprint.read_record(s.config.parent)

        def _show(host: HostSpec, ch: RemoteChannel) -> None:
            info = system_info(ch, host.role)
            typer.echo(f"[{host.name}]")
            for line in info.lines(local):
                typer.echo(f"  {line}")

        failures = _each_host(s, _show)
    _report_failures(failures)


@app.command()
def unlock(
    ctx: typer.Context,
    hosts: Optional[str] = typer.Option(None, "--hosts", help=HOSTS_HELP),
    debug: bool = typer.Option(False, "--debug"),
) -> None:
    """Send the disk-encryption key to hosts waiting in their initrd."""
    with _guard():
        s = _load(ctx, hosts, debug)
        key = s.secrets.layout.disk_key
        failures: List[Tuple[str, LnfleetError]] = []
        for host in s.targets:
            try:
                unlock_host(host, key, ctx=s.ctx)
                typer.echo(f"{host.name}: unlocked")
            except LnfleetError as e:
                failures.append((host.name, e))
    _report_failures(failures)


# ------------------------------------------------------------------------------
# Fingerprint
# ------------------------------------------------------------------------------

@fingerprint_app.command("generate")
def fingerprint_generate(
    root: Path = typer.Option(Path("."), "--root", help="Deployment repository"),
) -> None:
    """Record the digest of the tracked files in fingerprint.json."""
    with _guard():
        record = fingerprint.generate(root)
    typer.echo(f"{record.digest} {record.revision}")


@fingerprint_app.command("check")
def fingerprint_check(
    root: Path = typer.Option(Path("."), "--root", help="Deployment repository"),
) -> None:
    """Fail when the tracked files no longer match fingerprint.json."""
    with _guard():
        record = fingerprint.check(root)
    typer.echo(f"fingerprint ok: {record.digest}")


if __name__ == "__main__":
    app()
