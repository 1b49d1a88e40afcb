"""headless-kit — drive a local Chrome through a managed ChromeDriver server.

Detects the installed browser, installs the matching driver binary, supervises
the driver-server process, and opens WebDriver sessions against it with a
bounded handshake retry. A small fluent facade covers navigation, element
actions, scripts and HTML/PNG/console output.
"""
from .driver import (  # noqa: F401
    DriverInstaller,
    DriverSession,
    PlatformDetector,
    HeadlessError,
    open_session,
)
from .browser import Browser, install_driver, open_browser  # noqa: F401
