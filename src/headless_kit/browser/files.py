"""File output helpers: HTML, PNG and console-log snapshots."""
import json
import logging
import os
import uuid

log = logging.getLogger(__name__)

# Browsers whose driver exposes the "browser" log type.
REMOTE_LOG_BROWSERS = ("chrome",)


def unique_name(extension: str) -> str:
    return f"{uuid.uuid4().hex}.{extension}"


def build_location(output_dir: str, filename: str = "", extension: str = "") -> str:
    """Resolve *filename* inside *output_dir*, adding *extension* if missing.

    Parent directories are created as needed.
    """
    if not filename:
        filename = unique_name(extension)
    elif extension and not filename.endswith(f".{extension}"):
        filename = f"{filename}.{extension}"
    location = os.path.join(output_dir, filename)
    os.makedirs(os.path.dirname(location) or ".", exist_ok=True)
    return location


def save_screenshot(driver, location: str) -> str:
    if not driver.save_screenshot(location):
        log.warning("Screenshot was not written: %s", location)
    return location


def save_text(location: str, content: str) -> str:
    with open(location, "w", encoding="utf-8") as f:
        f.write(content)
    return location


def save_console_log(driver, browser_name: str, location: str) -> str | None:
    """Dump the browser console log as JSON. Returns None when unsupported or empty."""
    if browser_name not in REMOTE_LOG_BROWSERS:
        return None
    entries = driver.get_log("browser")
    if not entries:
        return None
    with open(location, "w", encoding="utf-8") as f:
        json.dump(entries, f, ensure_ascii=False, indent=2)
    return location
