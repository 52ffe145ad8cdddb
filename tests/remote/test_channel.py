import paramiko
import pytest

from lnfleet.errors import RemoteError
from lnfleet.remote.channel import RemoteChannel


class FakeRunner:
    def __init__(self, results=None):
        self.results = results or {}
        self.commands = []
        self.closed = False

    def run(self, cmd, timeout=None, input=None):
        self.commands.append((cmd, input))
        res = self.results.get(cmd, (0, "ok\n", ""))
        if isinstance(res, Exception):
            raise res
        return res

    def close(self):
        self.closed = True


def _connector(runners, failures=0):
    """Fail *failures* times with a connection error, then hand out runners."""
    state = {"calls": 0, "kwargs": []}

    def connect(address, **kw):
        state["calls"] += 1
        state["kwargs"].append((address, kw))
        if state["calls"] <= failures:
            raise paramiko.SSHException("connection refused")
        return runners.pop(0)

    return connect, state


def test_connect_retries_then_succeeds(fleet, fast_ctx):
    runner = FakeRunner()
    connect, state = _connector([runner], failures=1)
    sleeps = []
    ch = RemoteChannel(fleet[1], ctx=fast_ctx, connector=connect, sleep=sleeps.append)
    with ch:
        rc, out, _ = ch.run("true")
    assert (rc, out) == (0, "ok\n")
    assert state["calls"] == 2
    assert len(sleeps) == 1
    address, kw = state["kwargs"][0]
    assert address == "192.168.0.11"
    assert kw["username"] == "root"
    assert runner.closed


def test_connect_exhaustion_raises_remote_error(fleet, fast_ctx):
    connect, state = _connector([], failures=10)
    ch = RemoteChannel(fleet[1], ctx=fast_ctx, connector=connect, sleep=lambda s: None)
    with pytest.raises(RemoteError) as exc:
        ch.connect()
    assert exc.value.host == "db-00"
    assert exc.value.stage == "connect"
    assert state["calls"] == fast_ctx.settings.connect_retries


def test_nonzero_exit_raises_when_checked(fleet, fast_ctx):
    runner = FakeRunner({"false": (1, "", "boom\n")})
    connect, _ = _connector([runner])
    ch = RemoteChannel(fleet[1], ctx=fast_ctx, connector=connect)
    with pytest.raises(RemoteError, match="boom"):
        ch.run("false", stage="probe")
    rc, _, err = ch.run("false", check=False)
    assert rc == 1 and err == "boom\n"


def test_session_failure_closes_channel(fleet, fast_ctx):
    runner = FakeRunner({"hang": OSError("connection reset")})
    connect, _ = _connector([runner])
    ch = RemoteChannel(fleet[1], ctx=fast_ctx, connector=connect)
    with pytest.raises(RemoteError, match="connection reset"):
        ch.run("hang")
    assert runner.closed


def test_read_text_returns_none_for_missing_file(fleet, fast_ctx):
    runner = FakeRunner({"cat /etc/missing": (1, "", "No such file")})
    connect, _ = _connector([runner])
    ch = RemoteChannel(fleet[1], ctx=fast_ctx, connector=connect)
    assert ch.read_text("/etc/missing") is None


def test_connector_without_session_raises_remote_error(fleet, fast_ctx):
    ch = RemoteChannel(fleet[1], ctx=fast_ctx, connector=lambda address, **kw: None,
                       sleep=lambda s: None)
    with pytest.raises(RemoteError, match="no ssh session to root@192.168.0.11"):
        ch.run("true")
