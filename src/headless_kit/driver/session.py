"""Driver-server process supervision and remote session handshake.

A :class:`DriverSession` owns one spawned driver-server process and the
WebDriver session opened against it. At most one session per port is
supported; nothing here locks the port or the driver directory.

The child process is reaped by ``stop()``, by the context-manager exit, or
(as a last resort) by a ``weakref.finalize`` hook on garbage collection or
interpreter exit. A hard crash of the host interpreter can still leak it.
"""
import logging
import os
import time
import weakref
from contextlib import contextmanager
from typing import Any, Callable, Mapping

from selenium import webdriver
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.common.options import ArgOptions
from selenium.webdriver.firefox.options import Options as FirefoxOptions
from selenium.webdriver.remote.client_config import ClientConfig

from .detection import OSFamily, detect_os_family
from .errors import (
    BinaryNotFoundError,
    SessionHandshakeError,
    SessionStateError,
    UnsupportedBrowserError,
)
from .installer import DEFAULT_DRIVER_DIR, driver_path as default_driver_path
from .process import ChildProcessHandle, ChildProcessRunner

log = logging.getLogger(__name__)

DEFAULT_PORT = 9515
# Bounds abnormal hangs of the driver process: stop grace and per-request
# handshake timeout, seconds.
DEFAULT_PROCESS_TIMEOUT = 30.0
HANDSHAKE_ATTEMPTS = 3
HANDSHAKE_DELAY = 0.05

BROWSER_OPTIONS: Mapping[str, type[ArgOptions]] = {
    "chrome": ChromeOptions,
    "firefox": FirefoxOptions,
}

_NO_DISPLAY_DEFAULT = (OSFamily.MACOS, OSFamily.WINDOWS)


def build_options(browser_kind: str, arguments=()) -> ArgOptions:
    """Browser options (capabilities) for *browser_kind* with *arguments* added."""
    try:
        options_cls = BROWSER_OPTIONS[browser_kind]
    except KeyError:
        raise UnsupportedBrowserError(browser_kind) from None
    options = options_cls()
    for arg in arguments:
        options.add_argument(arg)
    return options


def remote_session(url: str, options: ArgOptions, timeout: float) -> webdriver.Remote:
    """Open a WebDriver session against the driver server at *url*.

    *timeout* bounds each HTTP request, so a port held by a process that
    accepts connections but never answers cannot block the handshake.
    """
    client_config = ClientConfig(remote_server_addr=url, timeout=timeout)
    return webdriver.Remote(command_executor=url, options=options, client_config=client_config)


class DriverSession:
    """Spawns the driver server and opens a session against it.

    ``start()`` returns the instance itself, so both of these work::

        with DriverSession().start("chrome", ["--headless"]) as session:
            session.get_underlying_handle().get("https://example.com")

        session = DriverSession()
        try:
            session.start()
        finally:
            session.stop()
    """

    def __init__(
        self,
        *,
        driver_dir: str = DEFAULT_DRIVER_DIR,
        driver_path: str | None = None,
        port: int = DEFAULT_PORT,
        os_family: OSFamily | None = None,
        runner: ChildProcessRunner | None = None,
        session_factory: Callable[[str, ArgOptions, float], Any] | None = None,
        attempts: int = HANDSHAKE_ATTEMPTS,
        delay: float = HANDSHAKE_DELAY,
        process_timeout: float = DEFAULT_PROCESS_TIMEOUT,
        handshake_timeout: float | None = None,
        environ: Mapping[str, str] | None = None,
        log_path: str = "",
        event_logger=None,
    ):
        self.driver_dir = driver_dir
        self.port = port
        self.os_family = os_family or detect_os_family()
        self.attempts = max(1, attempts)
        self.delay = delay
        self.process_timeout = process_timeout
        self.handshake_timeout = process_timeout if handshake_timeout is None else handshake_timeout
        self.log_path = log_path
        self._driver_path = driver_path
        self._runner = runner or ChildProcessRunner()
        self._session_factory = session_factory or remote_session
        self._environ = os.environ if environ is None else environ
        self._event_logger = event_logger

        self.process: ChildProcessHandle | None = None
        self.capabilities: dict[str, Any] = {}
        self.browser_kind: str | None = None
        self._driver = None
        self._session_id: str | None = None
        self._finalizer: weakref.finalize | None = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.stop()

    @property
    def session_url(self) -> str:
        return f"http://localhost:{self.port}"

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_open(self) -> bool:
        return self._session_id is not None

    def locate_binary(self) -> str:
        """Installed driver path. Never installs; see ``DriverInstaller``."""
        path = self._driver_path or default_driver_path(self.driver_dir, self.os_family)
        if not os.path.isfile(path):
            raise BinaryNotFoundError(f"Unable to find webdriver binary: {path}")
        return path

    def environment(self) -> dict[str, str]:
        """Child environment; Linux-family hosts get ``DISPLAY=:0`` unless set."""
        env = dict(self._environ)
        if self.os_family not in _NO_DISPLAY_DEFAULT:
            env.setdefault("DISPLAY", ":0")
        return env

    def get_underlying_handle(self):
        """The selenium WebDriver for DOM actions. Requires an open session."""
        if self._driver is None or self._session_id is None:
            raise SessionStateError("Session is not open")
        return self._driver

    def start(self, browser_kind: str = "chrome", options=()) -> "DriverSession":
        if self.is_open:
            raise SessionStateError(f"Session {self._session_id} is already open")

        browser_options = build_options(browser_kind, options)
        binary = self.locate_binary()
        started = time.monotonic()

        args = [f"--port={self.port}"]
        if self.log_path:
            args.append(f"--log-path={self.log_path}")
        self.process = self._runner.spawn(
            binary, args,
            env=self.environment(),
            timeout=self.process_timeout,
            capture=False,
        )
        self._finalizer = weakref.finalize(self, self.process.terminate, self.process_timeout)
        log.info("Started %s (pid %s) on port %d",
                 os.path.basename(binary), self.process.pid, self.port)
        if self._event_logger is not None:
            self._event_logger.log_process_spawn(self.process.command, self.process.pid)

        try:
            driver = self._handshake(browser_options)
        except SessionHandshakeError:
            self._terminate_process()
            raise

        self._driver = driver
        self._session_id = driver.session_id
        self.browser_kind = browser_kind
        caps = getattr(driver, "capabilities", None)
        self.capabilities = dict(caps) if isinstance(caps, Mapping) else browser_options.to_capabilities()
        log.info("Opened %s session %s", browser_kind, self._session_id)
        if self._event_logger is not None:
            self._event_logger.log_session_open(
                self._session_id, browser_kind, self.session_url, time.monotonic() - started,
            )
        return self

    def _handshake(self, browser_options: ArgOptions):
        # The server may not accept connections right after spawn.
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                driver = self._session_factory(
                    self.session_url, browser_options, self.handshake_timeout,
                )
            except Exception as e:
                last_error = e
                log.warning("Handshake attempt %d/%d failed: %s", attempt, self.attempts, e)
                if self._event_logger is not None:
                    self._event_logger.log_handshake_attempt(attempt, self.attempts, False, str(e))
                time.sleep(self.delay)
                continue
            if self._event_logger is not None:
                self._event_logger.log_handshake_attempt(attempt, self.attempts, True)
            return driver
        raise SessionHandshakeError(self.attempts, last_error) from last_error

    def stop(self) -> None:
        """Close the session, then terminate the driver process. Safe to repeat."""
        session_id = self._session_id
        quit_ok = True
        if self._driver is not None:
            try:
                self._driver.quit()
            except Exception as e:
                quit_ok = False
                log.warning("Failed to quit session %s cleanly: %s", session_id, e)
            self._driver = None
            self._session_id = None
            if self._event_logger is not None:
                self._event_logger.log_session_stop(session_id, quit_ok)
        self._terminate_process()

    def _terminate_process(self) -> None:
        if self._finalizer is None:
            return
        # Runs handle.terminate once; later calls are no-ops.
        self._finalizer()
        self._finalizer = None
        if self.process is not None:
            log.info("Driver process %s stopped (%s)", self.process.pid, self.process.state.value)
            if self._event_logger is not None:
                self._event_logger.log_process_exit(
                    self.process.pid, self.process.returncode, self.process.state.value,
                )


@contextmanager
def open_session(browser_kind: str = "chrome", options=(), **kwargs):
    """Yield a started :class:`DriverSession`; always stopped on exit."""
    session = DriverSession(**kwargs)
    try:
        yield session.start(browser_kind, options)
    finally:
        session.stop()
