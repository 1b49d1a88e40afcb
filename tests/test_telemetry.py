"""Tests for DriverEventLogger — telemetry contract tests."""
import json
import os
import tempfile

from headless_kit.telemetry.logger import DriverEventLogger


def test_basic_event_logging():
    """Events are written to JSONL with correct fields."""
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = DriverEventLogger("run123", log_dir=tmpdir)
        logger.log_install_stage("download", True, "/tmp/chromedriver.zip")
        logger.close()

        files = os.listdir(tmpdir)
        assert files == ["driver_run123.jsonl"]

        with open(os.path.join(tmpdir, files[0])) as f:
            lines = f.readlines()
        assert len(lines) == 1

        event = json.loads(lines[0])
        assert event["event"] == "install_stage"
        assert event["run_id"] == "run123"
        assert event["stage"] == "download"
        assert event["ok"] is True
        assert "ts" in event


def test_unsafe_run_id_is_sanitized():
    with tempfile.TemporaryDirectory() as tmpdir:
        with DriverEventLogger("a/b\\c", log_dir=tmpdir) as logger:
            logger.log_session_stop(None, True)
        assert os.listdir(tmpdir) == ["driver_a_b_c.jsonl"]


def test_context_manager():
    """DriverEventLogger works as context manager."""
    with tempfile.TemporaryDirectory() as tmpdir:
        with DriverEventLogger("run_cm", log_dir=tmpdir) as logger:
            logger.log_process_spawn(["chromedriver-linux", "--port=9515"], 1234)
        assert logger._f is None
        assert len(os.listdir(tmpdir)) == 1


def test_unwritable_dir_never_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        blocker = os.path.join(tmpdir, "file")
        with open(blocker, "w") as f:
            f.write("")
        logger = DriverEventLogger("run", log_dir=os.path.join(blocker, "sub"))
        logger.log_session_open("s1", "chrome", "http://localhost:9515", 0.1)
        logger.close()


def test_golden_roundtrip():
    """Golden JSONL roundtrip: write a full lifecycle, read back, verify structure."""
    with tempfile.TemporaryDirectory() as tmpdir:
        with DriverEventLogger("golden", log_dir=tmpdir) as logger:
            for stage in ("version-resolution", "download", "extract", "rename"):
                logger.log_install_stage(stage, True)
            logger.log_install_end("114.0.5735.90", "linux64", "/opt/bin/chromedriver-linux", 1.2)
            logger.log_process_spawn(["chromedriver-linux", "--port=9515"], 4242)
            logger.log_handshake_attempt(1, 3, False, "connection refused")
            logger.log_handshake_attempt(2, 3, True)
            logger.log_session_open("abc123", "chrome", "http://localhost:9515", 0.3)
            logger.log_session_stop("abc123", True)
            logger.log_process_exit(4242, -15, "exited")

        with open(os.path.join(tmpdir, "driver_golden.jsonl")) as f:
            events = [json.loads(line) for line in f]

        assert [e["event"] for e in events] == ["install_stage"] * 4 + [
            "install_end", "process_spawn", "handshake_attempt", "handshake_attempt",
            "session_open", "session_stop", "process_exit",
        ]
        assert events[4]["ok"] is True
        assert events[6]["error"] == "connection refused"
        for e in events:
            assert e["run_id"] == "golden"
            assert "ts" in e
