"""driver — browser detection, driver install, and driver-server session lifecycle.

Control flow: PlatformDetector -> DriverInstaller (explicit, when the binary is
missing) -> DriverSession.start() -> DOM actions -> DriverSession.stop().
"""
from .errors import (  # noqa: F401
    HeadlessError,
    BinaryNotFoundError,
    VersionParseError,
    ProcessExecutionError,
    ProcessTimeoutError,
    InstallStage,
    WebDriverInstallError,
    UnsupportedBrowserError,
    SessionHandshakeError,
    SessionStateError,
)
from .detection import (  # noqa: F401
    OSFamily,
    Arch,
    BrowserCandidate,
    PlatformInfo,
    PlatformDetector,
    DEFAULT_BROWSER_TABLE,
    detect_os_family,
    detect_arch,
    detect_platform,
    parse_major_version,
    platform_tag,
)
from .process import ChildProcessHandle, ChildProcessRunner, ProcessState  # noqa: F401
from .installer import (  # noqa: F401
    DriverBinary,
    DriverEndpoints,
    DriverInstaller,
    InstallOptions,
    driver_filename,
    driver_path,
)
from .session import DriverSession, build_options, open_session  # noqa: F401
