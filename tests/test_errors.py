"""Tests for the error taxonomy."""
from headless_kit.driver.errors import (
    BinaryNotFoundError,
    HeadlessError,
    InstallStage,
    ProcessExecutionError,
    ProcessTimeoutError,
    SessionHandshakeError,
    SessionStateError,
    UnsupportedBrowserError,
    VersionParseError,
    WebDriverInstallError,
)


def test_stage_values():
    assert InstallStage.VERSION_RESOLUTION.value == "version-resolution"
    assert InstallStage.DOWNLOAD.value == "download"
    assert InstallStage.EXTRACT.value == "extract"
    assert InstallStage.RENAME.value == "rename"


def test_install_error_with_message():
    err = WebDriverInstallError(InstallStage.DOWNLOAD, "404 Not Found")
    assert err.stage == InstallStage.DOWNLOAD
    assert str(err) == "download: 404 Not Found"


def test_install_error_default_message():
    err = WebDriverInstallError(InstallStage.EXTRACT)
    assert str(err) == "extract"


def test_process_errors_carry_context():
    err = ProcessExecutionError(["/usr/bin/google-chrome", "--version"], 1, "bad flag\n")
    assert err.returncode == 1
    assert err.stderr == "bad flag\n"
    assert "bad flag" in str(err)
    assert "exit status 2" in str(ProcessExecutionError(["x"], 2))

    timeout = ProcessTimeoutError(["chrome"], 0.5)
    assert timeout.timeout == 0.5
    assert "0.5s" in str(timeout)


def test_handshake_error_wraps_last_error():
    cause = ConnectionRefusedError("refused")
    err = SessionHandshakeError(3, cause)
    assert err.attempts == 3
    assert err.last_error is cause
    assert "3 attempt" in str(err)
    assert "refused" in str(err)


def test_unsupported_browser():
    err = UnsupportedBrowserError("opera")
    assert err.browser == "opera"
    assert "opera" in str(err)


def test_all_errors_share_base():
    for cls in (
        BinaryNotFoundError, VersionParseError, ProcessExecutionError,
        ProcessTimeoutError, WebDriverInstallError, UnsupportedBrowserError,
        SessionHandshakeError, SessionStateError,
    ):
        assert issubclass(cls, HeadlessError)
    try:
        raise BinaryNotFoundError("no chrome")
    except HeadlessError as e:
        assert str(e) == "no chrome"
