"""Short-lived record of recently verified transactions.

Lets a retried request skip the chain RPC round-trips. The cache is an
optimisation only: the ledger's unique constraint is the replay authority,
so every backend fails open (a broken cache reads as a miss and a failed
write is ignored).
"""

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..logging_config import get_logger
from .models import PaymentChain, PriceableResource, VerifiedPayment

logger = get_logger("settlement.payments.cache")

CACHE_KEY_PREFIX = "payment:verified"
DEFAULT_TTL_SECONDS = 3600


def cache_key(chain: PaymentChain | str, transaction_signature: str) -> str:
    chain_value = chain.value if isinstance(chain, PaymentChain) else chain
    return f"{CACHE_KEY_PREFIX}:{chain_value}:{transaction_signature}"


@dataclass
class CachedSettlement:
    """A verified payment and the resource it was verified against."""

    payment: VerifiedPayment
    resource_type: str
    resource_id: str
    expected_amount_raw: int

    def matches(self, resource: PriceableResource) -> bool:
        return (
            self.resource_type == resource.resource_type.value
            and self.resource_id == resource.resource_id
            and self.expected_amount_raw == resource.price_raw
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "payment": self.payment.to_dict(),
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "expected_amount_raw": self.expected_amount_raw,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "CachedSettlement":
        data = json.loads(raw)
        return cls(
            payment=VerifiedPayment.from_dict(data["payment"]),
            resource_type=data["resource_type"],
            resource_id=data["resource_id"],
            expected_amount_raw=int(data["expected_amount_raw"]),
        )


def _decode(key: str, raw: Any) -> CachedSettlement | None:
    try:
        return CachedSettlement.from_json(raw)
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Ignoring unreadable settlement cache entry %s: %s", key, e)
        return None


class SettlementCache:
    """Interface shared by all cache backends."""

    async def get_cached(
        self, chain: PaymentChain, transaction_signature: str
    ) -> CachedSettlement | None:
        raise NotImplementedError

    async def mark_cached(
        self,
        chain: PaymentChain,
        transaction_signature: str,
        payment: VerifiedPayment,
        resource: PriceableResource,
    ) -> None:
        raise NotImplementedError

    async def is_cached(self, chain: PaymentChain, transaction_signature: str) -> bool:
        return await self.get_cached(chain, transaction_signature) is not None

    async def close(self) -> None:
        return None


class NullSettlementCache(SettlementCache):
    """Used when no cache is configured. Always a miss."""

    async def get_cached(self, chain, transaction_signature):
        return None

    async def mark_cached(self, chain, transaction_signature, payment, resource):
        return None


class MemorySettlementCache(SettlementCache):
    """In-process cache with TTL expiration (single worker deployments, tests)."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._cache: dict[str, tuple[str, float]] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    async def get_cached(self, chain, transaction_signature):
        key = cache_key(chain, transaction_signature)
        if key in self._cache:
            value, timestamp = self._cache[key]
            if self._clock() - timestamp < self._ttl:
                return _decode(key, value)
            # Expired, remove it
            del self._cache[key]
        return None

    async def mark_cached(self, chain, transaction_signature, payment, resource):
        entry = CachedSettlement(
            payment=payment,
            resource_type=resource.resource_type.value,
            resource_id=resource.resource_id,
            expected_amount_raw=resource.price_raw,
        )
        self._cache[cache_key(chain, transaction_signature)] = (entry.to_json(), self._clock())

    def clear(self) -> None:
        """Clear all cached values."""
        self._cache.clear()


class RedisSettlementCache(SettlementCache):
    """Redis-backed cache (GET / SETEX)."""

    def __init__(self, client: Redis, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> "RedisSettlementCache":
        return cls(Redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    async def get_cached(self, chain, transaction_signature):
        key = cache_key(chain, transaction_signature)
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Settlement cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        return _decode(key, raw)

    async def mark_cached(self, chain, transaction_signature, payment, resource):
        key = cache_key(chain, transaction_signature)
        entry = CachedSettlement(
            payment=payment,
            resource_type=resource.resource_type.value,
            resource_id=resource.resource_id,
            expected_amount_raw=resource.price_raw,
        )
        try:
            await self.client.setex(key, self.ttl_seconds, entry.to_json())
        except (RedisError, OSError) as e:
            logger.warning("Settlement cache write failed for %s: %s", key, e)

    async def close(self) -> None:
        await self.client.aclose()


def build_cache(redis_url: str | None, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> SettlementCache:
    """Redis when a URL is configured, otherwise no cache."""
    if redis_url:
        return RedisSettlementCache.from_url(redis_url, ttl_seconds=ttl_seconds)
    logger.info("REDIS_URL not set; settlement cache disabled")
    return NullSettlementCache()
