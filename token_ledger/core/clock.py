"""
Reference time for time-window rules.
"""

from datetime import datetime
from typing import Iterable


def now_for(moments: Iterable[datetime]) -> datetime:
    """Current time in the same zone as ``moments``.

    Aware timestamps give an aware ``now`` in the first timestamp's zone so
    the two can be compared. Naive or empty input gives naive local time.
    """
    for moment in moments:
        return datetime.now(tz=moment.tzinfo)
    return datetime.now()
