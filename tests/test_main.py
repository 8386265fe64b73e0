import logging

import pytest

from gltfinstancer.logging_config import setup_logging
from gltfinstancer.main import build_parser, main


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger("gltfinstancer")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_defaults():
    args = build_parser().parse_args([])
    assert args.scaffold == "triangle"
    assert args.ticks == 180
    assert args.fps == 60.0


def test_list(capsys):
    assert main(["--list", "--log-level", "WARNING"]) == 0
    out = capsys.readouterr().out
    assert "triangle-row:" in out


def test_run_scaffold():
    assert main(["triangle", "--ticks", "10", "--fps", "5", "--log-level", "WARNING"]) == 0


def test_run_directory(asset_directory):
    assert main(["--directory", str(asset_directory), "--animation", "0", "--ticks", "3", "--log-level", "WARNING"]) == 0


def test_unknown_scaffold():
    assert main(["cathedral", "--log-level", "WARNING"]) == 2


def test_bad_directory(tmp_path):
    assert main(["--directory", str(tmp_path), "--log-level", "WARNING"]) == 1


def test_log_file(tmp_path):
    log_file = tmp_path / "run.log"
    assert main(["triangle", "--ticks", "2", "--log-file", str(log_file)]) == 0
    assert "Simulated 2 frame(s)" in log_file.read_text(encoding="utf-8")


def test_setup_logging_replaces_handlers(tmp_path):
    setup_logging(logging.INFO)
    logger = setup_logging(logging.DEBUG, log_file=str(tmp_path / "debug.log"))
    assert len(logger.handlers) == 2
    assert logger.level == logging.DEBUG
    assert logging.getLogger("matplotlib").level == logging.WARNING


def test_extra_animation_on_a_playing_instance():
    assert main(["triangle", "--animation", "0", "--ticks", "2", "--log-level", "WARNING"]) == 1
