"""Error taxonomy for driver detection, installation and session lifecycle.

Install failures carry an InstallStage so callers can tell which step of the
pipeline broke without parsing messages.
"""
from enum import Enum


class HeadlessError(Exception):
    """Base class for all headless-kit errors."""


class BinaryNotFoundError(HeadlessError):
    """Browser or driver binary is absent."""


class VersionParseError(HeadlessError):
    """No ``major.minor.patch.build`` pattern in a version string."""


class ProcessExecutionError(HeadlessError):
    """Child process could not be started or exited non-zero."""

    def __init__(self, command: list[str], returncode: int | None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit status {returncode}"
        super().__init__(f"{command[0] if command else '?'} failed: {detail}")


class ProcessTimeoutError(HeadlessError):
    """Child process did not finish within its timeout."""

    def __init__(self, command: list[str], timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(
            f"{command[0] if command else '?'} timed out after {timeout:g}s"
        )


class InstallStage(Enum):
    """Steps of the driver install pipeline, in execution order."""
    VERSION_RESOLUTION = "version-resolution"
    DOWNLOAD = "download"
    EXTRACT = "extract"
    RENAME = "rename"


class WebDriverInstallError(HeadlessError):
    """Exception carrying the InstallStage that failed."""

    def __init__(self, stage: InstallStage, message: str = ""):
        self.stage = stage
        super().__init__(f"{stage.value}: {message}" if message else stage.value)


class UnsupportedBrowserError(HeadlessError):
    def __init__(self, browser: str):
        self.browser = browser
        super().__init__(f"Browser is not supported: {browser}")


class SessionHandshakeError(HeadlessError):
    """All handshake attempts against the driver server failed."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to open session after {attempts} attempt(s): {last_error}"
        )


class SessionStateError(HeadlessError):
    """Session used while closed, or started while already open."""
