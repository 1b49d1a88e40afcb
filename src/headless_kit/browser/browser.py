"""Fluent browser facade over an open :class:`DriverSession`.

Thin request/response wrappers around the selenium handle. Selectors are
plain CSS; there is no selector-resolution heuristics layer.
"""
import json
import logging
import os
import tempfile
import time

from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.by import By
from selenium.webdriver.support.select import Select

from . import files

log = logging.getLogger(__name__)

# Default Chrome switches for unattended headless runs.
DEFAULT_ARGUMENTS = (
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-default-apps",
    "--disable-extensions",
    "--disable-hang-monitor",
    "--disable-popup-blocking",
    "--disable-prompt-on-repost",
    "--disable-sync",
    "--disable-translate",
    "--metrics-recording-only",
    "--no-first-run",
    "--safebrowsing-disable-auto-update",
    "--password-store=basic",
    "--use-mock-keychain",
    "--headless",
    "--disable-gpu",
    "--incognito",
    "--font-render-hinting=none",
    "--hide-scrollbars",
    "--mute-audio",
)


class Browser:
    """Navigation, element, script and file-output actions.

    Every action method returns ``self`` so calls chain::

        browser.visit("example.com").click("a.more").screenshot("more")
    """

    def __init__(self, session, output_dir: str = ""):
        self.session = session
        self.output_dir = output_dir or tempfile.gettempdir()
        self.url: str | None = None
        self.messages: list = []
        self._html: str | None = None

    @property
    def driver(self):
        return self.session.get_underlying_handle()

    # ── Navigation ──────────────────────────────────────────────────────────

    def visit(self, url: str) -> "Browser":
        """Navigate to *url*; a missing scheme defaults to https."""
        if "://" not in url and not url.startswith("about:"):
            url = f"https://{url}"
        self.url = url
        self.driver.get(url)
        return self

    def blank(self) -> "Browser":
        self.driver.get("about:blank")
        return self

    def refresh(self) -> "Browser":
        self.driver.refresh()
        return self

    def back(self) -> "Browser":
        self.driver.back()
        return self

    def forward(self) -> "Browser":
        self.driver.forward()
        return self

    def resize(self, width: int, height: int) -> "Browser":
        self.driver.set_window_size(width, height)
        return self

    def maximize(self) -> "Browser":
        self.driver.maximize_window()
        return self

    def move(self, x: int, y: int) -> "Browser":
        self.driver.set_window_position(x, y)
        return self

    def fit_content(self) -> "Browser":
        """Resize the window to the rendered size of the ``html`` element."""
        size = self.driver.find_element(By.TAG_NAME, "html").size
        self.driver.set_window_size(size["width"], size["height"])
        return self

    def pause(self, milliseconds: int) -> "Browser":
        time.sleep(milliseconds / 1000)
        return self

    @property
    def title(self) -> str:
        return self.driver.title

    @property
    def current_url(self) -> str:
        return self.driver.current_url

    # ── Elements ────────────────────────────────────────────────────────────

    def _find(self, selector: str):
        return self.driver.find_element(By.CSS_SELECTOR, selector)

    def click(self, selector: str) -> "Browser":
        self._find(selector).click()
        return self

    def type(self, selector: str, value: str) -> "Browser":
        """Replace the element's value with *value*."""
        element = self._find(selector)
        element.clear()
        element.send_keys(value)
        return self

    def append(self, selector: str, value: str) -> "Browser":
        self._find(selector).send_keys(value)
        return self

    def press(self, selector: str) -> "Browser":
        """Click a button. Same as :meth:`click`; kept for readable form scripts."""
        return self.click(selector)

    def clear(self, selector: str) -> "Browser":
        self._find(selector).clear()
        return self

    def text(self, selector: str) -> str:
        return self._find(selector).text

    def is_visible(self, selector: str) -> bool:
        return self._find(selector).is_displayed()

    def value(self, selector: str, value=None) -> "Browser":
        """Read the element's value into ``messages``, or set it to *value*.

        Setting goes through script, so no input events fire.
        """
        if value is None:
            self.messages.append(self._find(selector).get_attribute("value"))
        else:
            self.messages.append(self.driver.execute_script(
                "document.querySelector(arguments[0]).value = arguments[1];", selector, value,
            ))
        return self

    def attribute(self, selector: str, name: str, value=None) -> "Browser":
        """Read attribute *name* into ``messages``, or set it to *value*."""
        if value is None:
            self.messages.append(self._find(selector).get_attribute(name))
        else:
            self.messages.append(self.driver.execute_script(
                "document.querySelector(arguments[0]).setAttribute(arguments[1], arguments[2]);",
                selector, name, str(value),
            ))
        return self

    def select(self, selector: str, values) -> "Browser":
        """Select the ``<option>`` elements whose value is in *values*.

        A multi-select is cleared first; a single select takes the first
        match. Disabled options are skipped.
        """
        if isinstance(values, (str, int)):
            values = [values]
        wanted = {str(v) for v in values}
        dropdown = Select(self._find(selector))
        if dropdown.is_multiple:
            dropdown.deselect_all()
        for option in dropdown.options:
            if not option.is_enabled() or option.get_attribute("value") not in wanted:
                continue
            option.click()
            if not dropdown.is_multiple:
                break
        return self

    def radio(self, selector: str, value=None) -> "Browser":
        self._find(_with_value(selector, value)).click()
        return self

    def check(self, selector: str, value=None) -> "Browser":
        element = self._find(_with_value(selector, value))
        if not element.is_selected():
            element.click()
        return self

    def uncheck(self, selector: str, value=None) -> "Browser":
        element = self._find(_with_value(selector, value))
        if element.is_selected():
            element.click()
        return self

    def attach(self, selector: str, path: str) -> "Browser":
        """Put a local file into an ``<input type=file>``."""
        path = os.path.abspath(path)
        if not os.path.isfile(path):
            raise FileNotFoundError(path)
        self._find(selector).send_keys(path)
        return self

    # ── Dialogs ─────────────────────────────────────────────────────────────

    def accept_dialog(self) -> "Browser":
        self.driver.switch_to.alert.accept()
        return self

    def dismiss_dialog(self) -> "Browser":
        self.driver.switch_to.alert.dismiss()
        return self

    def type_in_dialog(self, value: str) -> "Browser":
        self.driver.switch_to.alert.send_keys(value)
        return self

    # ── Dragging ────────────────────────────────────────────────────────────

    def drag(self, source: str, target: str) -> "Browser":
        ActionChains(self.driver).drag_and_drop(self._find(source), self._find(target)).perform()
        return self

    def drag_offset(self, selector: str, x: int = 0, y: int = 0) -> "Browser":
        ActionChains(self.driver).drag_and_drop_by_offset(self._find(selector), x, y).perform()
        return self

    def drag_up(self, selector: str, offset: int) -> "Browser":
        return self.drag_offset(selector, 0, -offset)

    def drag_down(self, selector: str, offset: int) -> "Browser":
        return self.drag_offset(selector, 0, offset)

    def drag_left(self, selector: str, offset: int) -> "Browser":
        return self.drag_offset(selector, -offset, 0)

    def drag_right(self, selector: str, offset: int) -> "Browser":
        return self.drag_offset(selector, offset, 0)

    # ── Scripts ─────────────────────────────────────────────────────────────

    def script(self, scripts) -> "Browser":
        """Execute one script or a list of scripts; results go to ``messages``."""
        if isinstance(scripts, str):
            scripts = [scripts]
        for js in scripts:
            self.messages.append(self.driver.execute_script(js))
        return self

    # ── Files ───────────────────────────────────────────────────────────────

    def set_html(self, html: str) -> "Browser":
        """Use *html* instead of the live page source for ``page_source``/``save_page``."""
        self._html = html
        return self

    @property
    def page_source(self) -> str:
        if self._html is not None:
            return self._html
        return self.driver.page_source

    def save_page(self, filename: str = "") -> str:
        location = files.build_location(self.output_dir, filename, "html")
        return files.save_text(location, self.page_source)

    def screenshot(self, filename: str = "") -> str:
        location = files.build_location(self.output_dir, filename, "png")
        return files.save_screenshot(self.driver, location)

    def pageshot(self, filename: str = "") -> str:
        """Full-page screenshot: the window grows to the page's scroll size first."""
        location = files.build_location(self.output_dir, filename, "png")
        size = self.driver.find_element(By.TAG_NAME, "html").size
        scroll_width = self.driver.execute_script("return document.documentElement.scrollWidth")
        scroll_height = self.driver.execute_script("return document.documentElement.scrollHeight")
        self.driver.set_window_size(
            max(scroll_width or 0, size["width"]), max(scroll_height or 0, size["height"]),
        )
        return files.save_screenshot(self.driver, location)

    def console_log(self, filename: str = "") -> str | None:
        location = files.build_location(self.output_dir, filename, "txt")
        return files.save_console_log(self.driver, self.session.browser_kind or "", location)

    # ── Teardown ────────────────────────────────────────────────────────────

    def quit(self) -> None:
        """End the WebDriver session and stop the driver process."""
        self.session.stop()


def _with_value(selector: str, value) -> str:
    """Narrow *selector* to the element whose ``value`` attribute is *value*."""
    if value is None:
        return selector
    return f"{selector}[value={json.dumps(str(value))}]"
