"""OS, architecture and Chrome discovery.

Browser locations come from an immutable candidate table injected into
:class:`PlatformDetector`, so tests can substitute synthetic platforms.
"""
import functools
import logging
import os
import platform
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping

from .errors import BinaryNotFoundError, VersionParseError
from .process import DEFAULT_TIMEOUT, ChildProcessRunner

log = logging.getLogger(__name__)

CHROME_PATH_ENV = "CHROME_PATH"

_VERSION_RE = re.compile(r"(\d+)(?:\.\d+){3}")


class OSFamily(Enum):
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    BSD = "bsd"
    SOLARIS = "solaris"
    UNKNOWN = "unknown"


class Arch(Enum):
    X86 = "x86"
    X64 = "x64"
    ARM64 = "arm64"


@dataclass(frozen=True)
class BrowserCandidate:
    """One place a browser binary may live. Empty ``search_path`` means ``PATH``."""
    search_path: str
    binary_name: str

    def resolve(self) -> str | None:
        if not self.search_path:
            return shutil.which(self.binary_name)
        path = os.path.join(os.path.expandvars(self.search_path), self.binary_name)
        return path if os.path.isfile(path) else None


def _unix_candidates() -> tuple[BrowserCandidate, ...]:
    names = ("google-chrome", "google-chrome-stable", "chromium", "chromium-browser")
    return (
        tuple(BrowserCandidate("/usr/bin", n) for n in names)
        + tuple(BrowserCandidate("/usr/local/bin", n) for n in names)
        + tuple(BrowserCandidate("", n) for n in names)
    )


DEFAULT_BROWSER_TABLE: Mapping[OSFamily, tuple[BrowserCandidate, ...]] = MappingProxyType({
    OSFamily.WINDOWS: (
        BrowserCandidate(r"%ProgramFiles(x86)%\Google\Chrome\Application", "chrome.exe"),
        BrowserCandidate(r"%ProgramFiles%\Google\Chrome\Application", "chrome.exe"),
        BrowserCandidate(r"%LocalAppData%\Google\Chrome\Application", "chrome.exe"),
    ),
    OSFamily.MACOS: (
        BrowserCandidate("/Applications/Google Chrome.app/Contents/MacOS", "Google Chrome"),
        BrowserCandidate("/Applications/Chromium.app/Contents/MacOS", "Chromium"),
    ),
    OSFamily.LINUX: _unix_candidates(),
    OSFamily.BSD: _unix_candidates(),
    OSFamily.SOLARIS: _unix_candidates(),
})


def detect_os_family(system: str | None = None) -> OSFamily:
    """Normalize ``platform.system()`` into an :class:`OSFamily`."""
    name = (system if system is not None else platform.system()).lower()
    if name.startswith("win") or name.startswith("cygwin") or name.startswith("msys"):
        return OSFamily.WINDOWS
    if name == "darwin":
        return OSFamily.MACOS
    if name == "linux":
        return OSFamily.LINUX
    if name.endswith("bsd") or name == "dragonfly":
        return OSFamily.BSD
    if name in ("sunos", "solaris"):
        return OSFamily.SOLARIS
    return OSFamily.UNKNOWN


def detect_arch(machine: str | None = None) -> Arch:
    name = (machine if machine is not None else platform.machine()).lower()
    if name in ("arm64", "aarch64", "armv8", "armv8l"):
        return Arch.ARM64
    if name in ("i386", "i486", "i586", "i686", "x86"):
        return Arch.X86
    return Arch.X64


def platform_tag(os_family: OSFamily, arch: Arch) -> str:
    """Tag used in driver archive names."""
    if os_family is OSFamily.WINDOWS:
        return "win32"
    if os_family is OSFamily.MACOS:
        return "mac64_m1" if arch is Arch.ARM64 else "mac64"
    return "linux64"


def parse_major_version(output: str) -> int:
    """Return the major version from the first ``a.b.c.d`` run in *output*.

    >>> parse_major_version("Google Chrome 114.0.5735.90")
    114
    """
    match = _VERSION_RE.search(output or "")
    if not match:
        raise VersionParseError(f"No version number found in: {output!r}")
    return int(match.group(1))


def query_registry() -> str | None:
    """Look up chrome.exe under the Windows ``App Paths`` registry key."""
    try:
        import winreg
    except ImportError:
        return None
    key_path = r"SOFTWARE\Microsoft\Windows\CurrentVersion\App Paths\chrome.exe"
    for hive in (winreg.HKEY_LOCAL_MACHINE, winreg.HKEY_CURRENT_USER):
        try:
            with winreg.OpenKey(hive, key_path) as key:
                value, _ = winreg.QueryValueEx(key, "")
        except OSError:
            continue
        if value:
            return value
    return None


@dataclass(frozen=True)
class PlatformInfo:
    os_family: OSFamily
    arch: Arch
    browser_path: str
    browser_version: int

    @property
    def platform_tag(self) -> str:
        return platform_tag(self.os_family, self.arch)


class PlatformDetector:
    """Resolves the current platform, the Chrome binary and its major version."""

    def __init__(
        self,
        table: Mapping[OSFamily, tuple[BrowserCandidate, ...]] = DEFAULT_BROWSER_TABLE,
        *,
        env_var: str = CHROME_PATH_ENV,
        environ: Mapping[str, str] | None = None,
        system: str | None = None,
        machine: str | None = None,
        runner: ChildProcessRunner | None = None,
        registry_lookup: Callable[[], str | None] | None = None,
        version_timeout: float = DEFAULT_TIMEOUT,
    ):
        self._table = table
        self._env_var = env_var
        self._environ = os.environ if environ is None else environ
        self._system = system
        self._machine = machine
        self._runner = runner or ChildProcessRunner()
        self._registry_lookup = registry_lookup or query_registry
        self._version_timeout = version_timeout

    @property
    def os_family(self) -> OSFamily:
        return detect_os_family(self._system)

    @property
    def arch(self) -> Arch:
        return detect_arch(self._machine)

    def find_browser(self) -> str:
        """Return the path of an existing browser binary.

        An override variable that is set but points nowhere is an error; it
        never falls through to the search table.
        """
        override = self._environ.get(self._env_var)
        if override:
            if os.path.isfile(override):
                log.info("Using browser from %s: %s", self._env_var, override)
                return override
            raise BinaryNotFoundError(
                f"{self._env_var} points to a missing file: {override}"
            )

        os_family = self.os_family
        if os_family is OSFamily.WINDOWS:
            path = self._registry_lookup()
            if path and os.path.isfile(path):
                log.info("Found Chrome via registry: %s", path)
                return path

        candidates = self._table.get(os_family)
        if not candidates:
            raise BinaryNotFoundError(f"No browser search locations for OS family '{os_family.value}'")

        for candidate in candidates:
            path = candidate.resolve()
            if path and os.path.isfile(path):
                log.info("Found browser: %s", path)
                return path
        raise BinaryNotFoundError("Chrome binary could not be found")

    def browser_version(self, browser_path: str) -> int:
        output = self._runner.execute(
            browser_path, ["--version"], timeout=self._version_timeout
        )
        major = parse_major_version(output)
        log.info("Detected browser major version %d", major)
        return major

    def detect(self) -> PlatformInfo:
        browser_path = self.find_browser()
        return PlatformInfo(
            os_family=self.os_family,
            arch=self.arch,
            browser_path=browser_path,
            browser_version=self.browser_version(browser_path),
        )


@functools.lru_cache(maxsize=None)
def detect_platform() -> PlatformInfo:
    """Detect the host platform once per process."""
    return PlatformDetector().detect()
