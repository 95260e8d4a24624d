from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Protocol

from redis.asyncio import Redis

from answer_engine.services.policy_engine import get_policy

logger = logging.getLogger(__name__)

DAY_KEY_TTL_SECONDS = 2 * 24 * 60 * 60
MONTH_KEY_TTL_SECONDS = 32 * 24 * 60 * 60
UPGRADE_OPTIONS = ['hobby', 'occ', 'pro', 'ent']


@dataclass
class UsageDecision:
    allowed: bool
    plan: str
    model_tier: str
    features: list[str] = field(default_factory=list)
    daily_used: int = 0
    monthly_used: int = 0
    daily_limit: int = 0
    monthly_limit: int = 0

    def details(self) -> dict:
        return {
            'plan': self.plan,
            'used': {'daily': self.daily_used, 'monthly': self.monthly_used},
            'limit': {'daily': self.daily_limit, 'monthly': self.monthly_limit},
            'upgrade_options': UPGRADE_OPTIONS,
        }


class UsageGate(Protocol):
    async def check_and_consume(self, user_id: str, plan: str) -> UsageDecision: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedisUsageGate:
    """
    Per-user daily and monthly counters in Redis.

    The counter is incremented first and compared afterwards, so two concurrent
    requests can never both take the last unit of quota. A denied request
    gives its unit back.
    """

    def __init__(self, redis: Redis, clock: Callable[[], datetime] = _utcnow):
        self.redis = redis
        self._clock = clock

    def _keys(self, user_id: str) -> tuple[str, str]:
        now = self._clock()
        return f'usage:{user_id}:d:{now:%Y%m%d}', f'usage:{user_id}:m:{now:%Y%m}'

    async def _incr(self, key: str, ttl: int) -> int:
        value = int(await self.redis.incr(key))
        if value == 1:
            await self.redis.expire(key, ttl)
        return value

    async def check_and_consume(self, user_id: str, plan: str) -> UsageDecision:
        policy = get_policy(plan)
        day_key, month_key = self._keys(user_id)
        daily = await self._incr(day_key, DAY_KEY_TTL_SECONDS)
        monthly = await self._incr(month_key, MONTH_KEY_TTL_SECONDS)

        allowed = daily <= policy.daily_limit and monthly <= policy.monthly_limit
        if not allowed:
            await self.redis.decr(day_key)
            await self.redis.decr(month_key)
            daily -= 1
            monthly -= 1
            logger.info('Usage limit reached on plan %s', plan, extra={'user_id': user_id})

        return UsageDecision(
            allowed=allowed,
            plan=policy.plan,
            model_tier=policy.model_tier,
            features=list(policy.features),
            daily_used=daily,
            monthly_used=monthly,
            daily_limit=policy.daily_limit,
            monthly_limit=policy.monthly_limit,
        )

    async def usage(self, user_id: str) -> dict[str, int]:
        day_key, month_key = self._keys(user_id)
        daily = await self.redis.get(day_key)
        monthly = await self.redis.get(month_key)
        return {'daily': int(daily or 0), 'monthly': int(monthly or 0)}
