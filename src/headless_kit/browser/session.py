"""Browser session lifecycle with runtime path injection.

Driver installation is never implicit: ``open_browser`` installs only when
the caller passes ``install_missing=True``. All paths are runtime-injected.
"""
import logging
from contextlib import contextmanager
from typing import Any, Mapping

from ..driver.detection import PlatformDetector
from ..driver.installer import DEFAULT_DRIVER_DIR, DriverInstaller, InstallOptions
from ..driver.session import DriverSession
from .browser import DEFAULT_ARGUMENTS, Browser

log = logging.getLogger(__name__)


def install_driver(
    options: InstallOptions | Mapping[str, Any] | None = None,
    *,
    driver_dir: str = DEFAULT_DRIVER_DIR,
    detector: PlatformDetector | None = None,
) -> str | None:
    """Detect Chrome and install the matching driver into *driver_dir*.

    Returns the installer's success message, or None on a soft failure.
    """
    installer = DriverInstaller(detector=detector, driver_dir=driver_dir)
    return installer.install(options)


@contextmanager
def open_browser(
    output_dir: str = "",
    browser: str = "chrome",
    options=(),
    *,
    install_missing: bool = False,
    install_options: InstallOptions | Mapping[str, Any] | None = None,
    driver_dir: str = DEFAULT_DRIVER_DIR,
    detector: PlatformDetector | None = None,
    **session_kwargs,
):
    """Open a driver session and yield a :class:`Browser`.

    The session is stopped (and the driver process reaped) on every exit path.
    """
    if install_missing:
        installer = DriverInstaller(detector=detector, driver_dir=driver_dir)
        if installer.installed_binary() is None:
            log.info("No driver in %s, installing", driver_dir)
            installer.install(install_options)

    session = DriverSession(driver_dir=driver_dir, **session_kwargs)
    try:
        session.start(browser, [*DEFAULT_ARGUMENTS, *options])
        yield Browser(session, output_dir=output_dir)
    finally:
        session.stop()
