import functools
import logging
import time
import warnings
from typing import Callable

from cachetools.func import ttl_cache

logger = logging.getLogger("ideacollab.performance")

SLOW_CALL_SECONDS = 1.0


def time_it(func):
    """Decorator to log the execution time of async functions, louder when slow"""

    @functools.wraps(func)
    async def async_wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start_time
            level = logging.WARNING if elapsed > SLOW_CALL_SECONDS else logging.DEBUG
            logger.log(
                level,
                f"{func.__qualname__} completed in {humanize_milliseconds(elapsed * 1000)}",
            )

    return async_wrapper


def setup_logs(level: int = logging.DEBUG):
    # logging.captureWarnings(True)
    warnings.simplefilter("default")
    logging.getLogger("ideacollab").setLevel(level)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def humanize_milliseconds(elapsed):
    """Write a millisecond amount in a human-readable way.
    >>> humanize_milliseconds(0)
    '0 ms.'
    >>> humanize_milliseconds(11)
    '11 ms.'
    >>> humanize_milliseconds(65*1000)
    '1\\'5"'
    >>> humanize_milliseconds(30*1000)
    '30"'
    >>> humanize_milliseconds(30*1000+10)
    '30.0"'
    >>> humanize_milliseconds((115*60 + 10)*1000)
    "1h55'"
    """
    elapsed = int(elapsed)
    if elapsed <= 5000:  # up to 5" we show milliseconds
        return f"{elapsed:,} ms."
    elapsed /= 1000.0
    if elapsed >= 60 * 90:
        # more than 1.5h show hours
        hours = int(elapsed / 3600)
        minutes = int((elapsed % 3600) / 60)
        return f"{hours}h{minutes}'"
    if elapsed >= 60:  # keep the minute
        minutes = int(elapsed / 60)
        seconds = int(elapsed - minutes * 60)
        return f"{minutes}'{seconds}\""
    # just the seconds
    if elapsed == int(elapsed):  # get rid of decimals
        return f'{int(elapsed)}"'
    return f'{elapsed:.1f}"'


loggers: dict[int, Callable] = {}


def ratelimited_log(delay_or_fn: int | Callable, msg=None):
    """Call a log method at most once per `delay` seconds for the same message.

    `ratelimited_log(logger.warning, "msg")` uses a one minute window,
    `ratelimited_log(3600)(logger.warning, "msg")` a custom one.
    """
    if callable(delay_or_fn):
        logger_method = delay_or_fn
        delay = 60
    else:
        delay = delay_or_fn
        logger_method = None

    if delay not in loggers:

        @ttl_cache(ttl=delay)
        def call(logger_method, message):
            logger_method(message)

        loggers[delay] = call

    if logger_method is not None:
        return loggers[delay](logger_method, msg)
    return loggers[delay]
