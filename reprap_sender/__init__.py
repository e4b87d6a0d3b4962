"""RepRap Sender - control engine for RepRap/Duet controllers.

Streams G-code over the controller's rr_* HTTP API with buffer flow control,
polls status into an operating mode, and estimates layer progress.
"""

__version__ = "0.3"
__author__ = "Bob Kolbasowski"

from .session import PrinterSession
from .types import JobMode, OperatingMode, SessionView
from .utils import Settings

__all__ = [
    "JobMode",
    "OperatingMode",
    "PrinterSession",
    "SessionView",
    "Settings",
]
