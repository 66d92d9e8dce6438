import logging
from functools import partial

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

import settings
from services.errors import BackendUnavailable
from utils.logs import humanize_milliseconds

logger = logging.getLogger("ideacollab.retry")


def before_sleep_log_concise(logger, log_level):
    def log_it(retry_state):
        wait = retry_state.next_action.sleep if retry_state.next_action else None
        if wait is not None:  # wait is in seconds
            wait_str = humanize_milliseconds(wait * 1000)
        else:
            wait_str = "unknown time"
        fn_name = retry_state.fn.__qualname__ if retry_state.fn else "operation"
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        if exception:
            msg = (
                f"Retrying {fn_name} in {wait_str} as it raised "
                f"{type(exception).__name__}: {exception}"
            )
        else:
            msg = f"Retrying {fn_name} in {wait_str}"
        logger.log(log_level, msg)

    return log_it


def feed_wait():
    """Exponential backoff between change feed reconnections."""
    if settings.TESTING_MODE:
        return wait_random(0, 0)
    return wait_exponential(multiplier=0.5, min=0.5, max=settings.FEED_RETRY_MAX_WAIT)


# Only for idempotent reads, a retried write could be applied twice
read_retry = partial(
    retry,
    before_sleep=before_sleep_log_concise(logger, logging.DEBUG),
    wait=wait_random(0, 0 if settings.TESTING_MODE else 0.5),
    stop=stop_after_attempt(2),
    retry=retry_if_exception_type(BackendUnavailable),
    reraise=True,
)
