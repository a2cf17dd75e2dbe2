"""
External collaborators used by the domain mapping core.

Plan limits, tenant notifications and the hostname -> tenant routing cache
live in other services; these classes are the narrow seams to them.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp
import redis.asyncio as redis

from .models import normalize_hostname, utcnow

logger = logging.getLogger("domain_mapper.domains.collaborators")


# ── Plans ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PlanLimits:
    plan: str
    max_domains: int
    custom_domains: bool
    custom_certificates: bool
    auto_ssl_renewal: bool
    health_monitoring: bool
    performance_analytics: bool

    def to_dict(self) -> dict:
        return {
            "plan": self.plan,
            "max_domains": self.max_domains,
            "custom_domains": self.custom_domains,
            "custom_certificates": self.custom_certificates,
            "auto_ssl_renewal": self.auto_ssl_renewal,
            "health_monitoring": self.health_monitoring,
            "performance_analytics": self.performance_analytics,
        }


class PlanCatalog:
    """Static plan table. Unknown plans are treated as the entry tier."""

    ORDER = ("foundation", "growth", "premium", "enterprise")

    def __init__(self, domain_limits: Dict[str, int]):
        self.domain_limits = dict(domain_limits)

    def _rank(self, plan: str) -> int:
        return self.ORDER.index(plan) if plan in self.ORDER else 0

    def normalize(self, plan: Optional[str]) -> str:
        plan = (plan or "").lower()
        return plan if plan in self.ORDER else self.ORDER[0]

    def limits_for(self, plan: Optional[str]) -> PlanLimits:
        plan = self.normalize(plan)
        rank = self._rank(plan)
        return PlanLimits(
            plan=plan,
            max_domains=self.domain_limits.get(plan, 0),
            custom_domains=rank >= self._rank("growth"),
            custom_certificates=rank >= self._rank("premium"),
            auto_ssl_renewal=rank >= self._rank("growth"),
            health_monitoring=rank >= self._rank("growth"),
            performance_analytics=rank >= self._rank("enterprise"),
        )


# ── Notifications ────────────────────────────────────────────────────

class LoggingNotifier:
    """Records notifications in the log when no delivery service is configured."""

    async def notify(self, tenant_id: str, event: str, subject: str, message: str, **data) -> None:
        logger.info(f"Notification [{event}] for tenant {tenant_id}: {subject}")


class WebhookNotifier:
    """Posts notifications to the platform's notification service."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def notify(self, tenant_id: str, event: str, subject: str, message: str, **data) -> None:
        payload = {
            "tenant_id": tenant_id,
            "event": event,
            "subject": subject,
            "message": message,
            "data": data,
            "sent_at": utcnow().isoformat(),
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                resp.raise_for_status()
        logger.debug(f"Notification [{event}] delivered for tenant {tenant_id}")


# ── Routing cache ────────────────────────────────────────────────────

class RoutingCache:
    """
    Shared hostname -> tenant cache read by the edge router.

    Uses Redis when available, otherwise an in-process dict with TTLs.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "domain_mapper:",
        ttl: int = 300,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.ttl = ttl
        self._redis: Optional[redis.Redis] = None
        self._use_redis = True
        self._memory: Dict[str, tuple] = {}

    async def _get_redis(self) -> Optional[redis.Redis]:
        if not self._use_redis:
            return None

        if self._redis is None:
            try:
                self._redis = await redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
            except Exception as e:
                logger.warning(f"Redis unavailable for routing cache, using in-memory: {e}")
                self._redis = None
                self._use_redis = False
                return None

        return self._redis

    def _key(self, hostname: str) -> str:
        return f"{self.key_prefix}route:{hostname}"

    async def set(self, hostname: str, tenant_id: str) -> None:
        hostname = normalize_hostname(hostname)
        r = await self._get_redis()
        if r:
            await r.set(self._key(hostname), tenant_id, ex=self.ttl)
        else:
            self._memory[hostname] = (tenant_id, time.monotonic() + self.ttl)

    async def get(self, hostname: str) -> Optional[str]:
        hostname = normalize_hostname(hostname)
        r = await self._get_redis()
        if r:
            return await r.get(self._key(hostname))
        entry = self._memory.get(hostname)
        if entry and time.monotonic() < entry[1]:
            return entry[0]
        return None

    async def invalidate(self, hostname: str) -> None:
        hostname = normalize_hostname(hostname)
        r = await self._get_redis()
        if r:
            await r.delete(self._key(hostname))
        else:
            self._memory.pop(hostname, None)
        logger.debug(f"Routing cache invalidated for {hostname}")

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()
            self._redis = None
