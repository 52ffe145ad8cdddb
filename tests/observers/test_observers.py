import json
import logging

from lnfleet.observers.console import ConsoleObserver
from lnfleet.observers.dispatcher import EventBus
from lnfleet.observers.events import HostFailed, RunSummary, new_ctx, stamp
from lnfleet.observers.jsonfile import JsonFileObserver
from lnfleet.observers.logger import LoggerObserver


class Broken:
    def notify(self, ev):
        raise RuntimeError("disk full")


def test_stamp_keeps_run_id():
    ctx = new_ctx(cluster="cluster.toml")
    again = stamp(ctx)
    assert again["run_id"] == ctx["run_id"]
    assert again["cluster"] == "cluster.toml"
    assert again["ts"].endswith("Z")


def test_bus_survives_failing_observer(capture, caplog):
    bus = EventBus([Broken(), capture])
    ev = RunSummary(operation="install", ok=2, failed=0, **new_ctx(cluster="c"))
    with caplog.at_level(logging.WARNING, logger="lnfleet"):
        bus.emit(ev)
    assert capture.events == [ev]
    assert "observer Broken failed on RunSummary" in caplog.text


def test_jsonfile_observer_appends_lines(tmp_path):
    path = tmp_path / "events" / "run.jsonl"
    ob = JsonFileObserver(path)
    ctx = new_ctx(cluster="c")
    ob.notify(HostFailed(host="db-00", operation="install", stage="Provision",
                         error="boom", **stamp(ctx)))
    ob.notify(RunSummary(operation="install", ok=0, failed=1, **stamp(ctx)))
    lines = [json.loads(l) for l in path.read_text().splitlines()]
    assert [l["type"] for l in lines] == ["HostFailed", "RunSummary"]
    assert lines[0]["host"] == "db-00"
    assert lines[0]["run_id"] == lines[1]["run_id"]


def test_logger_observer_logs_at_debug(caplog):
    ob = LoggerObserver(logging.getLogger("lnfleet"))
    with caplog.at_level(logging.DEBUG, logger="lnfleet"):
        ob.notify(RunSummary(operation="update", ok=1, failed=0, **new_ctx(cluster="c")))
    assert "[EVENT] RunSummary" in caplog.text


def test_console_observer_writes_to_stderr(capsys):
    ConsoleObserver().notify(RunSummary(operation="update", ok=1, failed=0,
                                        **new_ctx(cluster="c")))
    err = capsys.readouterr().err
    assert "RunSummary" in err and "operation=update" in err
