"""
Time-window resolution for activity analysis.

Turns a lookback duration into the absolute window handed to every
per-principal generation job of a run.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..exceptions import ConfigurationError
from ..models import AnalysisWindow

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 90

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_window(
    lookback_days: Any = DEFAULT_LOOKBACK_DAYS, clock: Optional[Clock] = None
) -> AnalysisWindow:
    """
    Compute the analysis window ending now.

    Args:
        lookback_days: Positive whole number of days to look back
        clock: Returns the current time; defaults to the UTC wall clock

    Returns:
        AnalysisWindow with ``end`` = now and ``start`` = now - lookback_days

    Raises:
        ConfigurationError: if lookback_days is not a positive integer
    """
    if isinstance(lookback_days, bool) or not isinstance(lookback_days, int) or lookback_days <= 0:
        raise ConfigurationError(
            "LOOKBACK_DAYS", f"Lookback days must be a positive integer, got {lookback_days!r}"
        )

    end = (clock or utc_now)()
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)

    try:
        start = end - timedelta(seconds=lookback_days * 86400)
    except OverflowError as e:
        raise ConfigurationError(
            "LOOKBACK_DAYS", f"Lookback of {lookback_days} days reaches past the earliest representable date"
        ) from e

    logger.debug(f"Resolved analysis window {start.isoformat()} - {end.isoformat()}")
    return AnalysisWindow(start=start, end=end)
