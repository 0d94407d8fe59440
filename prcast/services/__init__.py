"""Business logic services package."""

from prcast.services.store import (
    EventStore,
    StoreError,
    get_event_store
)
from prcast.services.redis_client import (
    RedisClient,
    RedisConnectionError,
    get_redis_client
)
from prcast.services.repository_matcher import (
    ProjectNotFoundError,
    RepositoryMatcher,
    parse_repository_url
)
from prcast.services.signature import compute_signature, verify_signature

__all__ = [
    'EventStore',
    'StoreError',
    'get_event_store',
    'RedisClient',
    'RedisConnectionError',
    'get_redis_client',
    'ProjectNotFoundError',
    'RepositoryMatcher',
    'parse_repository_url',
    'compute_signature',
    'verify_signature'
]
