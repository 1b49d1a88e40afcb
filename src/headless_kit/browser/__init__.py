"""browser — fluent DOM-action facade over a driver session."""
from .browser import Browser, DEFAULT_ARGUMENTS  # noqa: F401
from .files import build_location, unique_name  # noqa: F401
from .session import install_driver, open_browser  # noqa: F401
