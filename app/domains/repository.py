"""
Mapping repository: persistence and indexed lookups for domain mappings.
"""

import json
import logging
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from .errors import DomainConflictError, StaleMappingError
from .models import (
    STATUS_ACTIVE,
    STATUS_DELETING,
    DomainMapping,
    normalize_hostname,
    utcnow,
)

logger = logging.getLogger("domain_mapper.domains.repository")


class _CacheEntry:
    """TTL cache entry for routing lookups."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Optional[DomainMapping], ttl: float):
        self.value = value
        self.expires_at = time.monotonic() + ttl


class MappingRepository:
    """
    Data access for domain mappings.

    Uses Redis for persistence with in-memory fallback. The hostname key is
    claimed with SET NX so two tenants racing for the same hostname cannot
    both win.
    """

    POSITIVE_TTL = 60.0   # seconds to cache a routable hostname
    NEGATIVE_TTL = 10.0   # seconds to cache a miss

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "domain_mapper:",
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None
        self._use_redis = True
        # In-memory fallback
        self._memory_store: Dict[str, dict] = {}
        self._hostname_index: Dict[str, str] = {}
        self._tenant_index: Dict[str, set] = {}
        # In-process routing cache
        self._cache: Dict[str, _CacheEntry] = {}

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get Redis connection."""
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
                logger.info("Mapping repository connected to Redis")
            except Exception as e:
                logger.warning(
                    f"Redis unavailable for mapping repository, using in-memory: {e}"
                )
                self._redis = None
                self._use_redis = False
                return None

        return self._redis

    # ── Keys ─────────────────────────────────────────────────────────

    def _mapping_key(self, mapping_id: str) -> str:
        return f"{self.key_prefix}mapping:{mapping_id}"

    def _hostname_key(self, hostname: str) -> str:
        return f"{self.key_prefix}hostname:{hostname}"

    def _tenant_key(self, tenant_id: str) -> str:
        return f"{self.key_prefix}tenant:{tenant_id}"

    @property
    def _all_key(self) -> str:
        return f"{self.key_prefix}mappings"

    @property
    def _expiry_key(self) -> str:
        return f"{self.key_prefix}index:expiry"

    @property
    def _health_key(self) -> str:
        return f"{self.key_prefix}index:health"

    def _invalidate_cache(self, hostname: str) -> None:
        self._cache.pop(hostname, None)

    # ── Writes ───────────────────────────────────────────────────────

    async def create(self, mapping: DomainMapping) -> DomainMapping:
        """
        Persist a new mapping.

        Raises DomainConflictError if the hostname is already claimed.
        """
        hostname = mapping.hostname
        data = mapping.to_dict()

        r = await self._get_redis()
        if r:
            claimed = await r.set(self._hostname_key(hostname), mapping.id, nx=True)
            if not claimed:
                raise DomainConflictError(
                    f"Domain {hostname} is already mapped", domain=hostname
                )
            await r.set(self._mapping_key(mapping.id), json.dumps(data))
            await r.sadd(self._tenant_key(mapping.tenant_id), mapping.id)
            await r.sadd(self._all_key, mapping.id)
            await self._reindex(r, mapping)
        else:
            if hostname in self._hostname_index:
                raise DomainConflictError(
                    f"Domain {hostname} is already mapped", domain=hostname
                )
            self._hostname_index[hostname] = mapping.id
            self._memory_store[mapping.id] = data
            self._tenant_index.setdefault(mapping.tenant_id, set()).add(mapping.id)

        self._invalidate_cache(hostname)
        logger.info(f"Created mapping {mapping.id}: {hostname} -> tenant {mapping.tenant_id}")
        return mapping

    async def update(
        self,
        mapping: DomainMapping,
        expected_status: Optional[str] = None,
    ) -> DomainMapping:
        """
        Store the mapping.

        With expected_status, the write only happens if the stored record is
        still in that status; otherwise StaleMappingError is raised.
        """
        mapping.updated_at = utcnow()
        data = mapping.to_dict()
        key = self._mapping_key(mapping.id)

        r = await self._get_redis()
        if r:
            async with r.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise StaleMappingError(f"Mapping {mapping.id} no longer exists")
                    current = json.loads(raw)
                    if expected_status and current.get("status") != expected_status:
                        raise StaleMappingError(
                            f"Mapping {mapping.id} is {current.get('status')}, "
                            f"expected {expected_status}",
                            current_status=current.get("status"),
                        )
                    pipe.multi()
                    pipe.set(key, json.dumps(data))
                    await pipe.execute()
                except WatchError:
                    raise StaleMappingError(
                        f"Mapping {mapping.id} changed during update"
                    )
            await self._reindex(r, mapping)
            if mapping.status == STATUS_DELETING:
                await self._release_hostname(r, mapping.hostname, mapping.id)
        else:
            current = self._memory_store.get(mapping.id)
            if current is None:
                raise StaleMappingError(f"Mapping {mapping.id} no longer exists")
            if expected_status and current.get("status") != expected_status:
                raise StaleMappingError(
                    f"Mapping {mapping.id} is {current.get('status')}, "
                    f"expected {expected_status}",
                    current_status=current.get("status"),
                )
            self._memory_store[mapping.id] = data
            if (
                mapping.status == STATUS_DELETING
                and self._hostname_index.get(mapping.hostname) == mapping.id
            ):
                del self._hostname_index[mapping.hostname]

        self._invalidate_cache(mapping.hostname)
        logger.debug(f"Updated mapping {mapping.id} ({mapping.hostname}): {mapping.status}")
        return mapping

    async def delete(self, mapping_id: str) -> bool:
        """Hard-delete a mapping record."""
        mapping = await self.get(mapping_id)
        if not mapping:
            return False

        r = await self._get_redis()
        if r:
            await r.delete(self._mapping_key(mapping_id))
            await r.srem(self._tenant_key(mapping.tenant_id), mapping_id)
            await r.srem(self._all_key, mapping_id)
            await r.zrem(self._expiry_key, mapping_id)
            await r.zrem(self._health_key, mapping_id)
            await self._release_hostname(r, mapping.hostname, mapping_id)
        else:
            self._memory_store.pop(mapping_id, None)
            tenant_set = self._tenant_index.get(mapping.tenant_id)
            if tenant_set:
                tenant_set.discard(mapping_id)
            if self._hostname_index.get(mapping.hostname) == mapping_id:
                del self._hostname_index[mapping.hostname]

        self._invalidate_cache(mapping.hostname)
        logger.info(f"Deleted mapping {mapping_id} ({mapping.hostname})")
        return True

    async def _release_hostname(
        self, r: redis.Redis, hostname: str, mapping_id: str
    ) -> None:
        """Drop the hostname claim, but only if this mapping still owns it."""
        key = self._hostname_key(hostname)
        async with r.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                if await pipe.get(key) != mapping_id:
                    await pipe.unwatch()
                    return
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
            except WatchError:
                logger.debug(f"Hostname claim for {hostname} changed, leaving it")

    async def _reindex(self, r: redis.Redis, mapping: DomainMapping) -> None:
        """Maintain the sorted-set indexes used by the batch queries."""
        if mapping.certificate_expiry:
            await r.zadd(
                self._expiry_key,
                {mapping.id: mapping.certificate_expiry.timestamp()},
            )
        else:
            await r.zrem(self._expiry_key, mapping.id)

        if mapping.status == STATUS_ACTIVE:
            checked = mapping.last_health_check.timestamp() if mapping.last_health_check else 0
            await r.zadd(self._health_key, {mapping.id: checked})
        else:
            await r.zrem(self._health_key, mapping.id)

    async def record_access(self, hostname: str) -> Optional[DomainMapping]:
        """Bump the request counter for a routed hostname."""
        mapping = await self.get_by_hostname(hostname)
        if not mapping or mapping.status != STATUS_ACTIVE:
            return None
        mapping.request_count += 1
        mapping.last_accessed_at = utcnow()
        try:
            await self.update(mapping, expected_status=STATUS_ACTIVE)
        except StaleMappingError:
            logger.debug(f"Access for {hostname} not counted, mapping changed")
            return None
        return mapping

    # ── Reads ────────────────────────────────────────────────────────

    async def get(self, mapping_id: str) -> Optional[DomainMapping]:
        """Get a mapping by id."""
        r = await self._get_redis()

        if r:
            data = await r.get(self._mapping_key(mapping_id))
            if not data:
                return None
            info = json.loads(data) if isinstance(data, str) else data
        else:
            info = self._memory_store.get(mapping_id)
            if not info:
                return None

        return DomainMapping.from_dict(info)

    async def get_for_tenant(
        self, tenant_id: str, mapping_id: str
    ) -> Optional[DomainMapping]:
        """Get a mapping by id, only if it belongs to the tenant."""
        mapping = await self.get(mapping_id)
        if not mapping or mapping.tenant_id != tenant_id:
            return None
        return mapping

    async def get_by_hostname(self, hostname: str) -> Optional[DomainMapping]:
        """Get the mapping currently holding a hostname, in any status."""
        hostname = normalize_hostname(hostname)
        r = await self._get_redis()
        if r:
            mapping_id = await r.get(self._hostname_key(hostname))
        else:
            mapping_id = self._hostname_index.get(hostname)
        if not mapping_id:
            return None
        return await self.get(mapping_id)

    async def find_by_hostname(self, hostname: str) -> Optional[DomainMapping]:
        """
        Hot-path routing lookup: returns an active, verified mapping or None.

        Uses an in-process TTL cache to avoid hitting Redis on every request.
        """
        hostname = normalize_hostname(hostname)

        cached = self._cache.get(hostname)
        if cached and time.monotonic() < cached.expires_at:
            return cached.value

        mapping = await self.get_by_hostname(hostname)
        if mapping and mapping.status == STATUS_ACTIVE and mapping.verified_at:
            self._cache[hostname] = _CacheEntry(mapping, self.POSITIVE_TTL)
            return mapping

        # Cache the miss with shorter TTL
        self._cache[hostname] = _CacheEntry(None, self.NEGATIVE_TTL)
        return None

    async def find_by_tenant(
        self, tenant_id: str, include_deleting: bool = False
    ) -> List[DomainMapping]:
        """List a tenant's mappings, newest first."""
        r = await self._get_redis()
        if r:
            ids = await r.smembers(self._tenant_key(tenant_id))
        else:
            ids = set(self._tenant_index.get(tenant_id, set()))

        mappings: List[DomainMapping] = []
        for mapping_id in ids:
            mapping = await self.get(mapping_id)
            if not mapping:
                continue
            if mapping.status == STATUS_DELETING and not include_deleting:
                continue
            mappings.append(mapping)

        mappings.sort(key=lambda m: m.created_at, reverse=True)
        return mappings

    async def count_by_tenant(self, tenant_id: str) -> int:
        return len(await self.find_by_tenant(tenant_id))

    async def _all(self) -> List[DomainMapping]:
        r = await self._get_redis()
        if r:
            ids = await r.smembers(self._all_key)
        else:
            ids = list(self._memory_store.keys())

        mappings = []
        for mapping_id in ids:
            mapping = await self.get(mapping_id)
            if mapping:
                mappings.append(mapping)
        return mappings

    async def find_by_status(self, status: str) -> List[DomainMapping]:
        return [m for m in await self._all() if m.status == status]

    async def find_expiring_within(
        self, days: int, now: Optional[datetime] = None
    ) -> List[DomainMapping]:
        """Active, SSL-enabled mappings whose certificate expires within `days`."""
        now = now or utcnow()
        horizon = now + timedelta(days=days)

        r = await self._get_redis()
        if r:
            ids = await r.zrangebyscore(
                self._expiry_key, now.timestamp(), horizon.timestamp()
            )
            candidates = [m for m in [await self.get(i) for i in ids] if m]
        else:
            candidates = await self._all()

        return [
            m for m in candidates
            if m.status == STATUS_ACTIVE
            and m.ssl_enabled
            and m.certificate_expiry is not None
            and now <= m.certificate_expiry <= horizon
        ]

    async def find_needing_health_check(
        self, older_than_minutes: int = 60, now: Optional[datetime] = None
    ) -> List[DomainMapping]:
        """Active mappings never checked or last checked before the cutoff."""
        cutoff = (now or utcnow()) - timedelta(minutes=older_than_minutes)

        r = await self._get_redis()
        if r:
            ids = await r.zrangebyscore(self._health_key, "-inf", f"({cutoff.timestamp()}")
            candidates = [m for m in [await self.get(i) for i in ids] if m]
        else:
            candidates = await self._all()

        return [
            m for m in candidates
            if m.status == STATUS_ACTIVE
            and (m.last_health_check is None or m.last_health_check < cutoff)
        ]

    async def tenant_stats(self, tenant_id: str) -> dict:
        """Aggregate counts for a tenant's mappings."""
        mappings = await self.find_by_tenant(tenant_id)
        stats = {
            "total": len(mappings),
            "by_status": {},
            "verified": 0,
            "ssl_enabled": 0,
            "by_ssl_status": {},
            "by_health_status": {},
            "total_requests": 0,
            "average_response_time": 0.0,
        }
        for m in mappings:
            stats["by_status"][m.status] = stats["by_status"].get(m.status, 0) + 1
            stats["by_ssl_status"][m.ssl_status] = stats["by_ssl_status"].get(m.ssl_status, 0) + 1
            stats["by_health_status"][m.health_status] = (
                stats["by_health_status"].get(m.health_status, 0) + 1
            )
            if m.verified_at:
                stats["verified"] += 1
            if m.ssl_enabled:
                stats["ssl_enabled"] += 1
            stats["total_requests"] += m.request_count
        if mappings:
            stats["average_response_time"] = round(
                sum(m.average_response_time for m in mappings) / len(mappings), 2
            )
        return stats

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info("Mapping repository Redis connection closed")
