"""
Infrastructure layer - external system integrations.
Redis for the admission gate and one adapter per payment provider.
"""

from .redis_client import get_redis, close_redis

__all__ = ['get_redis', 'close_redis']
