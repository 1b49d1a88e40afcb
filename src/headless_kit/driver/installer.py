"""ChromeDriver download and installation.

The pipeline is linear: resolve version -> download -> extract -> rename.
Each step raises :class:`WebDriverInstallError` tagged with its stage.
``install()`` always re-downloads; callers wanting skip-if-present should
check :meth:`DriverInstaller.installed_binary` first.
"""
import http.client
import logging
import os
import shutil
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
import zipfile
from dataclasses import dataclass
from typing import Any, Mapping

from .detection import OSFamily, PlatformDetector, PlatformInfo
from .errors import InstallStage, WebDriverInstallError

log = logging.getLogger(__name__)

DEFAULT_DRIVER_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "bin"
)
DEFAULT_BASE_URL = "https://chromedriver.storage.googleapis.com"
DRIVER_NAME = "chromedriver"
ARCHIVE_NAME = "chromedriver.zip"


def driver_filename(os_family: OSFamily) -> str:
    """Installed driver file name, e.g. ``chromedriver-linux``.

    The session's binary locator depends on this name.
    """
    suffix = ".exe" if os_family is OSFamily.WINDOWS else ""
    return f"{DRIVER_NAME}-{os_family.value}{suffix}"


def driver_path(driver_dir: str, os_family: OSFamily) -> str:
    return os.path.join(driver_dir, driver_filename(os_family))


@dataclass(frozen=True)
class DriverEndpoints:
    base_url: str = DEFAULT_BASE_URL

    def version_url(self, major: int) -> str:
        return f"{self.base_url.rstrip('/')}/LATEST_RELEASE_{int(major)}"

    def download_url(self, version: str, platform_tag: str) -> str:
        return "{}/{}/{}".format(
            self.base_url.rstrip("/"),
            urllib.parse.quote(version, safe=""),
            urllib.parse.quote(f"{DRIVER_NAME}_{platform_tag}.zip", safe=""),
        )


@dataclass(frozen=True)
class InstallOptions:
    proxy: str | None = None
    ssl_no_verify: bool = False
    timeout: float = 30.0

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "InstallOptions":
        """Accept ``{"proxy": ..., "ssl-no-verify": True, "timeout": ...}``."""
        return cls(
            proxy=options.get("proxy") or None,
            ssl_no_verify=bool(options.get("ssl-no-verify", options.get("ssl_no_verify", False))),
            timeout=float(options.get("timeout", 30.0)),
        )

    def build_opener(self) -> urllib.request.OpenerDirector:
        handlers: list[urllib.request.BaseHandler] = []
        if self.proxy:
            handlers.append(urllib.request.ProxyHandler({"http": self.proxy, "https": self.proxy}))
        if self.ssl_no_verify:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            handlers.append(urllib.request.HTTPSHandler(context=context))
        return urllib.request.build_opener(*handlers)


@dataclass(frozen=True)
class DriverBinary:
    version: str
    platform_tag: str
    local_path: str
    installed_at: float


class DriverInstaller:
    """Installs the ChromeDriver release matching the local Chrome major version."""

    def __init__(
        self,
        platform_info: PlatformInfo | None = None,
        *,
        driver_dir: str = DEFAULT_DRIVER_DIR,
        endpoints: DriverEndpoints | None = None,
        detector: PlatformDetector | None = None,
        event_logger=None,
    ):
        self._platform_info = platform_info
        self._detector = detector
        self.driver_dir = driver_dir
        self.endpoints = endpoints or DriverEndpoints()
        self._event_logger = event_logger
        self._options = InstallOptions()
        self.installed: DriverBinary | None = None

    @property
    def platform_info(self) -> PlatformInfo:
        if self._platform_info is None:
            self._platform_info = (self._detector or PlatformDetector()).detect()
        return self._platform_info

    @property
    def target_path(self) -> str:
        return driver_path(self.driver_dir, self.platform_info.os_family)

    def installed_binary(self) -> str | None:
        """Path of an already-installed driver, or None."""
        path = self.target_path
        return path if os.path.isfile(path) else None

    def install(self, options: InstallOptions | Mapping[str, Any] | None = None) -> str | None:
        """Download and install the matching driver.

        Returns a success message naming the installed path, or None when the
        final binary is not on disk afterwards.
        """
        if options is None:
            options = InstallOptions()
        elif not isinstance(options, InstallOptions):
            options = InstallOptions.from_mapping(options)
        self._options = options

        started = time.monotonic()
        info = self.platform_info

        version = self._stage(InstallStage.VERSION_RESOLUTION, self.resolve_version, info.browser_version)
        archive = self._stage(InstallStage.DOWNLOAD, self.download, version, info.platform_tag)
        extracted = self._stage(InstallStage.EXTRACT, self.extract, archive)
        final = self._stage(InstallStage.RENAME, self.rename, extracted)

        path = final if os.path.isfile(final) else None
        if self._event_logger is not None:
            self._event_logger.log_install_end(
                version, info.platform_tag, path, time.monotonic() - started,
            )
        if path is None:
            log.warning("Driver binary missing after install: %s", final)
            return None

        self.installed = DriverBinary(
            version=version,
            platform_tag=info.platform_tag,
            local_path=path,
            installed_at=time.time(),
        )
        log.info("Installed chromedriver %s at %s", version, path)
        return f"Successfully installed webdriver at: {path}"

    def _stage(self, stage: InstallStage, step, *args):
        try:
            result = step(*args)
        except WebDriverInstallError as e:
            self._log_stage(stage, False, str(e))
            raise
        self._log_stage(stage, True, str(result))
        return result

    def _log_stage(self, stage: InstallStage, ok: bool, detail: str):
        if self._event_logger is not None:
            self._event_logger.log_install_stage(stage.value, ok, detail)

    def _fetch(self, url: str) -> bytes:
        log.debug("GET %s", url)
        opener = self._options.build_opener()
        with opener.open(url, timeout=self._options.timeout) as resp:
            return resp.read()

    def resolve_version(self, major: int) -> str:
        """Latest driver release identifier for a browser major version."""
        url = self.endpoints.version_url(major)
        try:
            body = self._fetch(url)
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            raise WebDriverInstallError(
                InstallStage.VERSION_RESOLUTION, f"{url}: {e}"
            ) from e
        version = body.decode("utf-8", errors="replace").strip()
        if not version:
            raise WebDriverInstallError(
                InstallStage.VERSION_RESOLUTION,
                f"Failed to resolve latest webdriver version for Chrome {major}",
            )
        log.info("Resolved chromedriver %s for Chrome %s", version, major)
        return version

    def download(self, version: str, platform_tag: str) -> str:
        """Fetch the driver archive into the driver directory. Returns its path."""
        url = self.endpoints.download_url(version, platform_tag)
        location = os.path.join(self.driver_dir, ARCHIVE_NAME)
        try:
            os.makedirs(self.driver_dir, exist_ok=True)
            data = self._fetch(url)
            if not data:
                raise WebDriverInstallError(InstallStage.DOWNLOAD, f"{url}: empty response")
            with open(location, "wb") as f:
                f.write(data)
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            raise WebDriverInstallError(InstallStage.DOWNLOAD, f"{url}: {e}") from e
        return location

    def extract(self, archive: str) -> str:
        """Extract the first file entry next to *archive*, then delete the archive.

        The archive is removed on both success and failure.
        """
        try:
            with zipfile.ZipFile(archive) as zf:
                entries = [n for n in zf.namelist() if not n.endswith("/")]
                if not entries:
                    raise WebDriverInstallError(InstallStage.EXTRACT, f"{archive} is empty")
                extracted = zf.extract(entries[0], self.driver_dir)
        except (zipfile.BadZipFile, OSError) as e:
            raise WebDriverInstallError(InstallStage.EXTRACT, f"{archive}: {e}") from e
        finally:
            try:
                os.remove(archive)
            except FileNotFoundError:
                pass
            except OSError as e:
                log.warning("Could not remove archive %s: %s", archive, e)
        return extracted

    def rename(self, extracted: str) -> str:
        """Move the extracted binary to its platform-qualified name and chmod 0755."""
        target = self.target_path
        try:
            os.replace(extracted, target)
            os.chmod(target, 0o755)
        except OSError as e:
            raise WebDriverInstallError(InstallStage.RENAME, f"{extracted}: {e}") from e

        # Newer archives nest the binary in a directory (chromedriver-linux64/).
        rel = os.path.relpath(extracted, self.driver_dir)
        top = rel.split(os.sep, 1)[0]
        if top != rel:
            shutil.rmtree(os.path.join(self.driver_dir, top), ignore_errors=True)
        return target
