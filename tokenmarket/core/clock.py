"""Current-time source for listing windows.

Listing windows are stored as unix seconds. Services take an explicit ``now``
so tests can move time freely; when omitted they read the wall clock here.
"""

import time
from typing import Callable

Clock = Callable[[], int]


def unix_now() -> int:
    return int(time.time())


def get_clock() -> Clock:
    """FastAPI dependency returning the clock routes pass to the services."""
    return unix_now
