"""Two-tier caching for geocoding results, routes and boundary checks."""

from .geocoding import GeocodingCache
from .manager import CacheManager
from .memory import MemoryTier
from .persistent import RedisTier, build_redis_tier
from .routes import RouteCache
from .scheduler import WarmingScheduler
from .service import CacheStats, NamespacePolicy, TwoTierCache

__all__ = [
    "CacheManager",
    "CacheStats",
    "GeocodingCache",
    "MemoryTier",
    "NamespacePolicy",
    "RedisTier",
    "RouteCache",
    "TwoTierCache",
    "WarmingScheduler",
    "build_redis_tier",
]
