"""
Redis connection settings for the check-in service

Either a single REDIS_URL (as hosted Redis providers hand out) or the
discrete REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD variables.
Every client decodes responses to str; the stores rely on it.
"""
import logging
import os
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger("redis-config")

DEFAULT_SOCKET_TIMEOUT = 5
HEALTH_CHECK_INTERVAL = 30


def _client_options() -> Dict[str, Any]:
    return {
        'socket_timeout': int(os.getenv('REDIS_SOCKET_TIMEOUT', str(DEFAULT_SOCKET_TIMEOUT))),
        'socket_connect_timeout': int(os.getenv('REDIS_CONNECT_TIMEOUT', str(DEFAULT_SOCKET_TIMEOUT))),
        'health_check_interval': HEALTH_CHECK_INTERVAL,
        'decode_responses': True
    }


def get_redis_config() -> Dict[str, Any]:
    """Discrete connection settings; ignored when REDIS_URL is set"""
    config = {
        'host': os.getenv('REDIS_HOST', 'localhost'),
        'port': int(os.getenv('REDIS_PORT', '6379')),
        'db': int(os.getenv('REDIS_DB', '0')),
        'password': os.getenv('REDIS_PASSWORD') or None,
    }
    config.update(_client_options())
    return config


def create_redis_connection(url: Optional[str] = None) -> redis.Redis:
    """
    Build the shared Redis client

    Args:
        url: Explicit redis:// or rediss:// URL; defaults to REDIS_URL
    """
    url = url or os.getenv('REDIS_URL')
    if url:
        return redis.Redis.from_url(url, **_client_options())

    config = {k: v for k, v in get_redis_config().items() if v is not None}
    return redis.Redis(**config)


def test_redis_connection(client: Optional[redis.Redis] = None) -> bool:
    """Ping Redis; False (and an error log) when it cannot be reached"""
    try:
        return bool((client or create_redis_connection()).ping())
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        return False


def get_redis_url() -> str:
    """URL form of the connection settings, for rq / rqscheduler command lines"""
    url = os.getenv('REDIS_URL')
    if url:
        return url

    config = get_redis_config()
    auth = f":{config['password']}@" if config['password'] else ""
    return f"redis://{auth}{config['host']}:{config['port']}/{config['db']}"
