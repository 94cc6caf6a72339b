# storefront/utils/retry.py
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)
import redis

from storefront.domain.errors import DuplicateCartRow, StaleStockVersion
from storefront.utils.settings import STOCK_CONFLICT_RETRIES


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )


def stock_retry(attempts: int = STOCK_CONFLICT_RETRIES):
    # re-read + CAS again; StaleStockVersion escapes once attempts run out
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.01, min=0.01, max=0.2),
        retry=retry_if_exception_type(StaleStockVersion),
    )


def lock_wait(attempts: int = 20, interval: float = 0.05):
    """Poll a non-blocking acquire until it returns True, False when we give up."""
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda acquired: not acquired),
        retry_error_callback=lambda state: False,
    )


def duplicate_row_retry():
    # the losing insert is rolled back and replayed as an increment
    return retry(
        reraise=True,
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(DuplicateCartRow),
    )
