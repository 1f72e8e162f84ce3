"""UTC timezone enforcement.

This module sets the TZ environment variable to UTC and provides the
timezone-aware clock used for every stored timestamp.
"""

import os
from datetime import datetime, timezone

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
