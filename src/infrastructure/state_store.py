# src/infrastructure/state_store.py
import json
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from redis.exceptions import RedisError

from src.schemas.connection_schema import Platform, utcnow
from src.services.errors import PersistenceError, StateExpired, StateMismatch, StateMissing

logger = structlog.get_logger(__name__)

OAUTH_STATE_PREFIX = "oauth_state:"
OAUTH_STATE_WINDOW = timedelta(minutes=10)
# redis keeps the key past the window so a late callback reads as expired rather than missing
OAUTH_STATE_KEY_TTL = int(OAUTH_STATE_WINDOW.total_seconds()) * 2

# deletes the key only while it still holds the record that was verified
COMPARE_AND_DELETE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class AntiForgeryTokenStore:
    """
    Single-use, time-boxed state tokens, one live token per platform.

    A token is consumed only by a matching verification, through an atomic
    compare-and-delete, so a forged callback leaves the live token intact and
    two callbacks racing with the right value can never both pass.
    """

    def __init__(self, redis_client, clock: Callable[[], datetime] = utcnow):
        self.redis = redis_client
        self.clock = clock
        self._compare_and_delete = redis_client.register_script(COMPARE_AND_DELETE)

    @staticmethod
    def _key(platform: Platform) -> str:
        return f"{OAUTH_STATE_PREFIX}{Platform(platform).value}"

    async def issue(self, platform: Platform) -> str:
        state = secrets.token_hex(32)
        payload = {"state": state, "created_at": self.clock().isoformat()}
        try:
            # overwrites whatever unconsumed token the platform had
            await self.redis.set(self._key(platform), json.dumps(payload), ex=OAUTH_STATE_KEY_TTL)
        except RedisError as exc:
            logger.exception("oauth_state_store_failed", platform=Platform(platform).value, error=str(exc))
            raise PersistenceError("Failed to store OAuth state") from exc
        logger.info("oauth_state_issued", platform=Platform(platform).value)
        return state

    async def verify(self, platform: Platform, supplied: Optional[str]) -> None:
        key = self._key(platform)
        name = Platform(platform).value
        try:
            raw = await self.redis.get(key)
        except RedisError as exc:
            logger.exception("oauth_state_read_failed", platform=name, error=str(exc))
            raise PersistenceError("Failed to read OAuth state") from exc

        if not raw:
            logger.warning("oauth_state_missing", platform=name)
            raise StateMissing("Invalid OAuth state")

        try:
            stored = json.loads(raw)
            issued_at = datetime.fromisoformat(stored["created_at"])
            value = stored["state"]
        except (ValueError, KeyError, TypeError):
            logger.warning("oauth_state_corrupt", platform=name)
            raise StateMissing("Invalid OAuth state")

        if not supplied or not secrets.compare_digest(str(value).encode(), str(supplied).encode()):
            logger.warning("oauth_state_mismatch", platform=name)
            raise StateMismatch("Invalid or expired OAuth state")

        try:
            consumed = await self._compare_and_delete(keys=[key], args=[raw])
        except RedisError as exc:
            logger.exception("oauth_state_consume_failed", platform=name, error=str(exc))
            raise PersistenceError("Failed to consume OAuth state") from exc
        if not consumed:
            # another verification or a fresh issue got there first
            logger.warning("oauth_state_already_consumed", platform=name)
            raise StateMissing("Invalid OAuth state")

        age = self.clock() - issued_at
        if age > OAUTH_STATE_WINDOW:
            logger.warning("oauth_state_expired", platform=name, age_seconds=int(age.total_seconds()))
            raise StateExpired("Invalid or expired OAuth state")

        logger.info("oauth_state_verified", platform=name)
