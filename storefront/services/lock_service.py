# storefront/services/lock_service.py
import uuid
from contextlib import contextmanager
from typing import Iterator

import redis
from redis.exceptions import RedisError

from storefront.domain.errors import Conflict, StorageFailure
from storefront.domain.owner import Owner
from storefront.utils.retry import lock_wait, redis_retry
from storefront.utils.settings import OWNER_LOCK_TTL_SECONDS, REDIS_TIMEOUT, REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# compare-and-delete in one step: the lock is only released by the holder
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockService:
    """
    Per-owner mutation lock.

    Every cart mutation of one owner (session or account) runs while holding
    ``cart:<owner>:lock``. The key expires on its own so a crashed request can
    not wedge a cart.
    """

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        wait_attempts: int = 20,
        wait_interval: float = 0.05,
    ):
        self.wait_attempts = wait_attempts
        self.wait_interval = wait_interval
        if client is None:
            client = redis.Redis.from_url(
                url or REDIS_URL,
                decode_responses=True,
                socket_timeout=REDIS_TIMEOUT,
                socket_connect_timeout=REDIS_TIMEOUT,
            )
        self.redis = client

    @staticmethod
    def owner_key(owner: Owner) -> str:
        return f"cart:{owner.lock_key}:lock"

    @redis_retry()
    def try_acquire(self, key: str, token: str, ttl: int) -> bool:
        # SET cart:account:7:lock <token> NX EX 10
        return bool(self.redis.set(name=key, value=token, nx=True, ex=ttl))

    @redis_retry()
    def release(self, key: str, token: str) -> bool:
        res = self.redis.eval(_RELEASE_LUA, 1, key, token)
        return bool(res)

    def acquire_owner_lock(self, owner: Owner, ttl: int = OWNER_LOCK_TTL_SECONDS) -> str | None:
        """Returns the holder token, or None when the lock stayed busy."""
        key = self.owner_key(owner)
        token = uuid.uuid4().hex

        @lock_wait(self.wait_attempts, self.wait_interval)
        def _acquire() -> bool:
            return self.try_acquire(key, token, ttl)

        if not _acquire():
            logger.warning(f"Lock {key} still busy, giving up")
            return None
        logger.debug(f"Acquired {key}")
        return token

    def release_owner_lock(self, owner: Owner, token: str) -> bool:
        key = self.owner_key(owner)
        released = self.release(key, token)
        if not released:
            logger.warning(f"Lock {key} expired before release")
        return released

    @contextmanager
    def hold(self, *owners: Owner) -> Iterator[None]:
        # fixed order so two requests locking the same pair can not deadlock
        acquired = []
        try:
            for owner in sorted(set(owners), key=lambda o: o.lock_key):
                try:
                    token = self.acquire_owner_lock(owner)
                except RedisError as e:
                    raise StorageFailure("Lock store unavailable") from e
                if token is None:
                    raise Conflict(
                        "Cart is being modified by another request, try again",
                        code="CART_BUSY",
                    )
                acquired.append((owner, token))
            yield
        finally:
            for owner, token in reversed(acquired):
                try:
                    self.release_owner_lock(owner, token)
                except RedisError as e:
                    # the key carries a TTL, it will go away on its own
                    logger.warning(f"Failed to release lock for {owner.lock_key}: {e}")
