# db/extensions.py

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
import os
import redis
from redis.connection import ConnectionPool, SSLConnection
import urllib.parse
import logging

db = SQLAlchemy()
migrate = Migrate()

logger = logging.getLogger(__name__)

_redis_client = None


def create_redis_pool(redis_url=None, use_tls=None):
    """
    Create a Redis connection pool to reuse connections.
    Shared by the fan-out publisher and the room relay.
    """
    redis_url = redis_url if redis_url is not None else os.getenv('REDIS_URL')
    if use_tls is None:
        use_tls = os.getenv('REDIS_TLS_ENABLED', 'false').lower() == 'true'

    if redis_url:
        parsed = urllib.parse.urlparse(redis_url)

        pool_kwargs = {
            'host': parsed.hostname,
            'port': parsed.port or 6379,
            'username': parsed.username,
            'password': parsed.password,
            'decode_responses': True,
            'socket_connect_timeout': 10,
            'socket_keepalive': True,
            'retry_on_timeout': True,
            'retry_on_error': [
                redis.exceptions.ConnectionError,
                redis.exceptions.TimeoutError
            ],
            'health_check_interval': 30,
            'max_connections': 50,
        }

        if use_tls or parsed.scheme == 'rediss':
            pool_kwargs.update({
                'connection_class': SSLConnection,
                'ssl_cert_reqs': None,
                'ssl_check_hostname': False,
            })
            logger.info("✅ Redis pool with SSL/TLS enabled")

        try:
            pool = ConnectionPool(**pool_kwargs)
            logger.info(f"✅ Redis connection pool created: {parsed.hostname}")
            return pool
        except Exception as e:
            logger.error(f"❌ Failed to create Redis pool: {str(e)}")
            raise
    else:
        # Local development
        logger.info("🔧 Local Redis pool")
        return ConnectionPool(
            host=os.getenv('REDIS_HOST', 'localhost'),
            port=int(os.getenv('REDIS_PORT', 6379)),
            db=int(os.getenv('REDIS_DB', 0)),
            decode_responses=True,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            max_connections=20,
        )


def get_redis_client(redis_url=None, use_tls=None):
    """Return the process-wide Redis client, creating the pool on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis(connection_pool=create_redis_pool(redis_url, use_tls))
    return _redis_client


def check_redis_health(client=None):
    """Check Redis connection health"""
    try:
        (client or get_redis_client()).ping()
        return True
    except Exception as e:
        logger.error(f"❌ Redis health check failed: {str(e)}")
        return False
