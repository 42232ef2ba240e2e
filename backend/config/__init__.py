"""
Configuration module for the check-in service
"""

from .redis import create_redis_connection, get_redis_url, test_redis_connection

__all__ = ['create_redis_connection', 'get_redis_url', 'test_redis_connection']
