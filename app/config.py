# app/config.py

import os


class Config:
    # Flask Secret Key (also signs bearer tokens)
    SECRET_KEY = os.getenv('SECRET_KEY', 'your_secret_key')

    # Database Configuration
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URI',
        'postgresql://postgres:postgres@db:5432/qr_order_db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Database connection pool configuration
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,       # Validate connections before using
        "pool_recycle": 1800,        # Recycle every 30 minutes
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "connect_args": {
            "connect_timeout": 10,
            "options": "-c statement_timeout=30000"  # 30s query timeout
        }
    }

    # CORS
    CLIENT_URL = os.getenv('CLIENT_URL', 'http://localhost:3000')
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv('CORS_ORIGINS', CLIENT_URL).split(',')
        if origin.strip()
    ]

    # Bearer tokens
    AUTH_TOKEN_MAX_AGE = int(os.getenv('AUTH_TOKEN_MAX_AGE', 60 * 60 * 24))

    # Order lifecycle: 'strict' enforces the transition graph, 'relaxed' accepts any known status
    ORDER_TRANSITION_POLICY = os.getenv('ORDER_TRANSITION_POLICY', 'strict').lower()

    # Realtime fan-out: 'redis' shares events across instances, 'memory' is single-process only
    REALTIME_BACKEND = os.getenv('REALTIME_BACKEND', 'redis').lower()
    REALTIME_QUEUE_SIZE = int(os.getenv('REALTIME_QUEUE_SIZE', 100))
    REALTIME_HEARTBEAT_SECONDS = int(os.getenv('REALTIME_HEARTBEAT_SECONDS', 15))

    # Redis Configuration
    REDIS_URL = os.getenv('REDIS_URL')
    REDIS_TLS_ENABLED = os.getenv('REDIS_TLS_ENABLED', 'false').lower() == 'true'

    # eSewa Configuration
    ESEWA_SECRET_KEY = os.getenv('ESEWA_SECRET_KEY', '8gBm/:&EnhH.1/q')
    ESEWA_PRODUCT_CODE = os.getenv('ESEWA_PRODUCT_CODE', 'EPAYTEST')
    ESEWA_PAYMENT_URL = os.getenv(
        'ESEWA_PAYMENT_URL',
        'https://rc-epay.esewa.com.np/api/epay/main/v2/form'
    )
    ESEWA_SUCCESS_URL = os.getenv(
        'ESEWA_SUCCESS_URL',
        'http://localhost:8000/api/payment/esewa/verify'
    )
    ESEWA_FAILURE_URL = os.getenv(
        'ESEWA_FAILURE_URL',
        'http://localhost:8000/api/payment/esewa/verify'
    )


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REALTIME_BACKEND = 'memory'
    ORDER_TRANSITION_POLICY = 'strict'
    CLIENT_URL = 'http://client.test'
    CORS_ORIGINS = ['http://client.test']
    ESEWA_SECRET_KEY = 'test-esewa-secret'
    ESEWA_PRODUCT_CODE = 'EPAYTEST'
    REALTIME_HEARTBEAT_SECONDS = 1
