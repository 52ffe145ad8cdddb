import logging
from pathlib import Path
import textwrap

import pytest

from lnfleet.config.loader import load_description
from lnfleet.config.resolver import resolve
from lnfleet.errors import RemoteError
from lnfleet.settings import OrchestratorSettings
from lnfleet.utils.execution import ExecutionContext

EXAMPLE = Path(__file__).resolve().parents[1] / "example" / "cluster.toml"

KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITestTestTestTestTestTestTestTestTestTest test@host"


# ----------------- Fake remote channel -----------------

class FakeChannel:
    """
    Stands in for RemoteChannel. *handler(cmd)* returns (rc, out, err) or
    None for the default (0, "", "").
    """

    def __init__(self, host, handler=None):
        self.host = host
        self.name = host.name
        self.handler = handler
        self.calls = []
        self.inputs = []
        self.uploads = {}
        self.closed = 0
        self.reconnects = 0

    def connect(self):
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def run(self, cmd, *, check=True, timeout=None, stage=None, input=None):
        self.calls.append(cmd)
        if input is not None:
            self.inputs.append(input)
        res = self.handler(cmd) if self.handler else None
        rc, out, err = res if res is not None else (0, "", "")
        if check and rc != 0:
            raise RemoteError(f"{cmd!r} exited with {rc}", host=self.name, stage=stage)
        return rc, out, err

    def output(self, cmd, *, timeout=None, stage=None):
        return self.run(cmd, timeout=timeout, stage=stage)[1].strip()

    def read_text(self, path):
        rc, out, _ = self.run(f"cat {path}", check=False)
        return out if rc == 0 else None

    def put_text(self, content, remote_path, *, mode=None):
        self.uploads[remote_path] = content

    def put_file(self, local_path, remote_path, *, mode=None):
        self.uploads[remote_path] = Path(local_path).read_text()

    def wait_reachable(self, timeout, *, stage="reconnect"):
        self.reconnects += 1

    def close(self):
        self.closed += 1


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def kinds(self):
        return [e.__class__.__name__ for e in self.events]


# ----------------- Fixtures -----------------

@pytest.fixture(autouse=True)
def _reset_lnfleet_logger():
    """init_logging detaches the logger from root; undo that between tests."""
    yield
    logger = logging.getLogger("lnfleet")
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def fake_channel_cls():
    return FakeChannel


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def fast_ctx():
    """Settings that keep every wait loop short."""
    return ExecutionContext(settings=OrchestratorSettings(
        connect_timeout=1, connect_retries=2, probe_timeout=1, readiness_timeout=0.05,
        backoff_initial=0.01, backoff_max=0.01, reboot_timeout=1, parallelism=4,
    ))


@pytest.fixture
def example_path():
    return EXAMPLE


@pytest.fixture
def fleet():
    return resolve(load_description(EXAMPLE))


@pytest.fixture
def write_description(tmp_path):
    """Write a description with a common header; *body* holds the [hosts.*] tables."""
    def _write(body: str, defaults: str = "") -> Path:
        text = textwrap.dedent(f"""
            [global]
            deployment_flake = "github:example/deploy"
            application_flake = "github:example/app"
            secret_directory = "secrets"

            [host_defaults]
            ipv4_gateway = "10.0.0.1"
            ipv4_cidr = 24
            disks = ["/dev/vda"]
            public_ssh_keys = ["{KEY}"]
        """) + textwrap.dedent(defaults) + textwrap.dedent(body)
        p = tmp_path / "cluster.toml"
        p.write_text(text)
        return p
    return _write
