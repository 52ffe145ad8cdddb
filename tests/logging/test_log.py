import logging

from lnfleet.logging.log import init_logging


def test_init_logging_writes_trace_file(tmp_path):
    logger, run_id, log_path = init_logging(base_dir=tmp_path / "logs")

    logger.debug("remote output line")
    for h in logger.handlers:
        h.flush()

    assert log_path.parent == tmp_path / "logs"
    assert run_id in log_path.name
    text = log_path.read_text()
    assert f"run_id={run_id}" in text
    assert "remote output line" in text


def test_console_level_follows_verbose(tmp_path):
    logger, _, _ = init_logging(base_dir=tmp_path, verbose=False)
    console = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]
    assert [h.level for h in console] == [logging.INFO]

    logger, _, _ = init_logging(base_dir=tmp_path, verbose=True)
    console = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]
    assert [h.level for h in console] == [logging.DEBUG]
    assert len(logger.handlers) == 2
    assert logger.propagate is False
