"""Per-actor rate limiting.

Built on ``limits`` moving windows over in-memory storage, which expires idle
keys on its own. The limiter instance lives on ``app.state`` so each
application (and each test app) owns its own counters.
"""

import logging

from fastapi import Depends, HTTPException, Request, status
from limits import RateLimitItemPerMinute, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from clinic.auth.dependencies import get_current_actor
from clinic.core import config
from clinic.services.access import Actor

logger = logging.getLogger(__name__)


class ActorRateLimiter:
    def __init__(self, per_minute: int, burst: int, storage: MemoryStorage | None = None):
        self.storage = storage or MemoryStorage()
        self.strategy = MovingWindowRateLimiter(self.storage)
        self.items = []
        if per_minute > 0:
            if burst > 0:
                self.items.append(RateLimitItemPerSecond(burst))
            self.items.append(RateLimitItemPerMinute(per_minute))

    @property
    def enabled(self) -> bool:
        return bool(self.items)

    def allow(self, key: str) -> bool:
        for item in self.items:
            if not self.strategy.hit(item, key):
                return False
        return True

    def reset(self) -> None:
        self.storage.reset()


def build_rate_limiter() -> ActorRateLimiter:
    return ActorRateLimiter(config.RATE_LIMIT_PER_MINUTE, config.RATE_LIMIT_BURST)


def enforce_rate_limit(request: Request, actor: Actor = Depends(get_current_actor)) -> Actor:
    limiter: ActorRateLimiter | None = getattr(request.app.state, 'rate_limiter', None)
    if limiter is None:
        return actor

    if not limiter.allow(f'{actor.role.value}:{actor.actor_id}'):
        logger.warning('Rate limit exceeded for %s %s', actor.role.value, actor.actor_id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail='Too many requests, please try again later.',
        )
    return actor
