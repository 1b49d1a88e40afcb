"""Tests for DriverSession — fake driver server and fake WebDriver handshakes."""
import os
import socket
import stat
import tempfile
import time
from unittest.mock import MagicMock, patch

import pytest
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.firefox.options import Options as FirefoxOptions

from headless_kit.driver.detection import OSFamily
from headless_kit.driver.errors import (
    BinaryNotFoundError,
    SessionHandshakeError,
    SessionStateError,
    UnsupportedBrowserError,
)
from headless_kit.driver.process import ChildProcessHandle, ChildProcessRunner, ProcessState
from headless_kit.driver.session import DriverSession, build_options, open_session, remote_session


class FakeDriver:
    def __init__(self, session_id="abc123"):
        self.session_id = session_id
        self.capabilities = {"browserName": "chrome"}
        self.quit_calls = 0

    def quit(self):
        self.quit_calls += 1


class FailingFactory:
    """Raises *error* for the first *failures* calls, then returns a FakeDriver."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or ConnectionRefusedError("connection refused")
        self.calls = []

    def __call__(self, url, options, timeout):
        self.calls.append((url, options, timeout))
        if len(self.calls) <= self.failures:
            raise self.error
        return FakeDriver()


def _fake_handle():
    proc = MagicMock()
    proc.pid = 4242
    proc.poll.return_value = None
    proc.wait.return_value = 0
    proc.returncode = 0
    return ChildProcessHandle(
        command=["chromedriver-linux", "--port=9515"],
        timeout=30.0,
        process=proc,
        state=ProcessState.RUNNING,
        pid=4242,
    )


def _install_fake_driver(tmpdir):
    path = os.path.join(tmpdir, "chromedriver-linux")
    with open(path, "w") as f:
        f.write("#!/bin/sh\n")
    return path


def _session(tmpdir, factory, handles=None, **kwargs):
    runner = MagicMock()
    runner.spawn.side_effect = handles or [_fake_handle()]
    kwargs.setdefault("os_family", OSFamily.LINUX)
    kwargs.setdefault("environ", {})
    session = DriverSession(driver_dir=tmpdir, runner=runner, session_factory=factory, **kwargs)
    return session, runner


def test_build_options():
    chrome = build_options("chrome", ["--headless", "--disable-gpu"])
    assert isinstance(chrome, ChromeOptions)
    assert chrome.arguments == ["--headless", "--disable-gpu"]
    assert isinstance(build_options("firefox"), FirefoxOptions)


def test_build_options_unsupported():
    with pytest.raises(UnsupportedBrowserError) as exc_info:
        build_options("opera")
    assert exc_info.value.browser == "opera"


def test_start_opens_session():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _install_fake_driver(tmpdir)
        factory = FailingFactory(0)
        session, runner = _session(tmpdir, factory)
        assert session.session_id is None

        assert session.start("chrome", ["--headless"]) is session

        assert session.is_open
        assert session.session_id == "abc123"
        assert session.capabilities == {"browserName": "chrome"}
        assert isinstance(session.get_underlying_handle(), FakeDriver)
        runner.spawn.assert_called_once_with(
            path, ["--port=9515"],
            env={"DISPLAY": ":0"}, timeout=30.0, capture=False,
        )
        url, options, timeout = factory.calls[0]
        assert url == "http://localhost:9515"
        assert timeout == 30.0
        assert options.arguments == ["--headless"]
        session.stop()


def test_custom_port_and_log_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        factory = FailingFactory(0)
        log_path = os.path.join(tmpdir, "driver.log")
        session, runner = _session(tmpdir, factory, port=9600, log_path=log_path)
        session.start()
        assert runner.spawn.call_args.args[1] == ["--port=9600", f"--log-path={log_path}"]
        assert factory.calls[0][0] == "http://localhost:9600"
        session.stop()


def test_handshake_retries_until_server_ready():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        factory = FailingFactory(2)
        session, _ = _session(tmpdir, factory)
        session.start()
        assert len(factory.calls) == 3
        assert session.is_open
        session.stop()


def test_handshake_exhaustion_reaps_process():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        error = ConnectionRefusedError("port taken")
        factory = FailingFactory(99, error)
        handle = _fake_handle()
        session, _ = _session(tmpdir, factory, handles=[handle])

        started = time.monotonic()
        with pytest.raises(SessionHandshakeError) as exc_info:
            session.start()
        elapsed = time.monotonic() - started

    assert len(factory.calls) == 3
    assert exc_info.value.attempts == 3
    assert exc_info.value.last_error is error
    assert exc_info.value.__cause__ is error
    assert 0.14 <= elapsed < 2.0
    handle.process.terminate.assert_called_once()
    assert handle.state is ProcessState.EXITED
    assert session.session_id is None


def test_remote_session_bounds_http_timeout():
    options = ChromeOptions()
    with patch("headless_kit.driver.session.webdriver.Remote") as remote:
        remote_session("http://localhost:9515", options, 2.5)
    kwargs = remote.call_args.kwargs
    assert kwargs["command_executor"] == "http://localhost:9515"
    assert kwargs["options"] is options
    assert kwargs["client_config"].timeout == 2.5
    assert kwargs["client_config"].remote_server_addr == "http://localhost:9515"


def test_handshake_timeout_defaults_to_process_timeout():
    session = DriverSession(os_family=OSFamily.LINUX, runner=MagicMock(), process_timeout=7.0)
    assert session.handshake_timeout == 7.0
    session = DriverSession(
        os_family=OSFamily.LINUX, runner=MagicMock(), process_timeout=7.0, handshake_timeout=1.0,
    )
    assert session.handshake_timeout == 1.0


def test_silent_port_does_not_hang_start():
    # Accepts connections (kernel backlog) but never answers a request.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen(8)
        port = listener.getsockname()[1]

        with tempfile.TemporaryDirectory() as tmpdir:
            _install_fake_driver(tmpdir)
            handle = _fake_handle()
            session, _ = _session(tmpdir, None, handles=[handle], port=port, handshake_timeout=0.5)

            started = time.monotonic()
            with pytest.raises(SessionHandshakeError):
                session.start()
            elapsed = time.monotonic() - started

    assert elapsed < 15.0
    handle.process.terminate.assert_called_once()
    assert not session.is_open


def test_unsupported_browser_fails_before_spawn():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        factory = FailingFactory(0)
        session, runner = _session(tmpdir, factory)
        with pytest.raises(UnsupportedBrowserError):
            session.start("opera")
        runner.spawn.assert_not_called()
        assert factory.calls == []


def test_missing_driver_binary_does_not_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        session, runner = _session(tmpdir, FailingFactory(0))
        with pytest.raises(BinaryNotFoundError):
            session.start()
        runner.spawn.assert_not_called()
        assert os.listdir(tmpdir) == []


def test_explicit_driver_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        custom = os.path.join(tmpdir, "my-driver")
        with open(custom, "w") as f:
            f.write("")
        session, _ = _session(tmpdir, FailingFactory(0), driver_path=custom)
        assert session.locate_binary() == custom


def test_stop_is_idempotent():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        handle = _fake_handle()
        session, _ = _session(tmpdir, FailingFactory(0), handles=[handle])
        session.start()
        driver = session.get_underlying_handle()

        session.stop()
        session.stop()

    assert driver.quit_calls == 1
    assert handle.process.terminate.call_count == 1
    assert not session.is_open


def test_stop_without_start():
    session = DriverSession(os_family=OSFamily.LINUX, runner=MagicMock(), environ={})
    session.stop()
    assert session.process is None


def test_quit_failure_still_terminates_process(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        handle = _fake_handle()
        driver = MagicMock()
        driver.session_id = "s1"
        driver.quit.side_effect = RuntimeError("session already gone")
        session, _ = _session(tmpdir, lambda url, opts, timeout: driver, handles=[handle])
        session.start()
        with caplog.at_level("WARNING", logger="headless_kit.driver.session"):
            session.stop()

    handle.process.terminate.assert_called_once()
    assert session.session_id is None
    record = next(r for r in caplog.records if r.msg.startswith("Failed to quit"))
    assert record.args == ("s1", driver.quit.side_effect)
    assert record.getMessage() == "Failed to quit session s1 cleanly: session already gone"


def test_handle_requires_open_session():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        session, _ = _session(tmpdir, FailingFactory(0))
        with pytest.raises(SessionStateError):
            session.get_underlying_handle()
        session.start()
        session.stop()
        with pytest.raises(SessionStateError):
            session.get_underlying_handle()


def test_session_id_is_read_only():
    session = DriverSession(os_family=OSFamily.LINUX, runner=MagicMock(), environ={})
    with pytest.raises(AttributeError):
        session.session_id = "forged"


def test_start_while_open_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        session, runner = _session(tmpdir, FailingFactory(0))
        session.start()
        with pytest.raises(SessionStateError):
            session.start()
        assert runner.spawn.call_count == 1
        session.stop()


def test_restart_after_stop():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        drivers = iter([FakeDriver("s1"), FakeDriver("s2")])
        session, runner = _session(
            tmpdir, lambda url, opts, timeout: next(drivers),
            handles=[_fake_handle(), _fake_handle()],
        )
        session.start()
        assert session.session_id == "s1"
        session.stop()
        session.start()
        assert session.session_id == "s2"
        session.stop()
        assert runner.spawn.call_count == 2


def test_context_manager_stops_session():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        handle = _fake_handle()
        session, _ = _session(tmpdir, FailingFactory(0), handles=[handle])
        with session.start() as opened:
            assert opened.is_open
        assert not session.is_open
        handle.process.terminate.assert_called_once()


def test_open_session_helper():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        handle = _fake_handle()
        runner = MagicMock()
        runner.spawn.return_value = handle
        with pytest.raises(ValueError):
            with open_session(
                "chrome", ["--headless"],
                driver_dir=tmpdir, runner=runner, session_factory=FailingFactory(0),
                os_family=OSFamily.LINUX, environ={},
            ) as session:
                assert session.session_id == "abc123"
                raise ValueError("caller failure")
        handle.process.terminate.assert_called_once()


def test_environment_display_default():
    linux = DriverSession(os_family=OSFamily.LINUX, runner=MagicMock(), environ={"HOME": "/root"})
    assert linux.environment() == {"HOME": "/root", "DISPLAY": ":0"}

    existing = DriverSession(os_family=OSFamily.BSD, runner=MagicMock(), environ={"DISPLAY": ":99"})
    assert existing.environment()["DISPLAY"] == ":99"

    for family in (OSFamily.MACOS, OSFamily.WINDOWS):
        session = DriverSession(os_family=family, runner=MagicMock(), environ={"HOME": "/Users/x"})
        assert session.environment() == {"HOME": "/Users/x"}


def test_event_logger_records_lifecycle():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install_fake_driver(tmpdir)
        events = MagicMock()
        session, _ = _session(tmpdir, FailingFactory(1), event_logger=events)
        session.start()
        session.stop()

    events.log_process_spawn.assert_called_once()
    assert events.log_handshake_attempt.call_count == 2
    events.log_session_open.assert_called_once()
    events.log_session_stop.assert_called_once_with("abc123", True)
    events.log_process_exit.assert_called_once()


@pytest.mark.skipif(os.name == "nt", reason="POSIX shell script as fake driver")
def test_failed_handshake_reaps_real_process():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "chromedriver-linux")
        with open(path, "w") as f:
            f.write("#!/bin/sh\nexec sleep 30\n")
        os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR)

        session = DriverSession(
            driver_dir=tmpdir,
            os_family=OSFamily.LINUX,
            runner=ChildProcessRunner(),
            session_factory=FailingFactory(99),
            process_timeout=5.0,
        )
        with pytest.raises(SessionHandshakeError):
            session.start()

    assert session.process.state is ProcessState.EXITED
    assert session.process.process.poll() is not None
