"""telemetry — structured lifecycle event logging."""
from .logger import DriverEventLogger  # noqa: F401
