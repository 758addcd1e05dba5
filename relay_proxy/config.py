"""
Relay Proxy Configuration
"""

import os


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == 'true'


def _env_list(name: str) -> list:
    return [item.strip() for item in os.environ.get(name, '').split(',') if item.strip()]


class Config:
    """Base configuration"""

    # Server settings
    HOST = os.environ.get('RELAY_HOST', '0.0.0.0')
    PORT = int(os.environ.get('RELAY_PORT', 8080))
    DEBUG = _env_bool('RELAY_DEBUG', 'false')
    TESTING = False
    LOG_LEVEL = os.environ.get('RELAY_LOG_LEVEL', 'INFO')

    # Absolute origin the rewritten references point at.
    # Empty means: derive it from the incoming request.
    PROXY_BASE_URL = os.environ.get('RELAY_PROXY_BASE_URL', '')

    # Upstream fetch settings
    REQUEST_TIMEOUT = float(os.environ.get('RELAY_REQUEST_TIMEOUT', 10))
    MAX_RETRIES = int(os.environ.get('RELAY_MAX_RETRIES', 2))
    RETRY_DELAY = float(os.environ.get('RELAY_RETRY_DELAY', 1))

    # User agent
    USER_AGENT = os.environ.get(
        'RELAY_USER_AGENT',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
    )

    # Response cache
    CACHE_TTL = float(os.environ.get('RELAY_CACHE_TTL', 120))
    MAX_CACHE_SIZE = int(os.environ.get('RELAY_MAX_CACHE_SIZE', 100))

    # Client behavior script
    INJECT_SCRIPTS = _env_bool('RELAY_INJECT_SCRIPTS', 'true')
    # Origins allowed to send script text into rendered pages.
    # Empty disables the channel entirely.
    MESSAGE_ORIGINS = _env_list('RELAY_MESSAGE_ORIGINS')

    # Headers to forward from client to target
    FORWARD_HEADERS = [
        'accept',
        'accept-language',
        'range',
    ]

    # Headers to forward from target to client on passthrough
    PASSTHROUGH_HEADERS = [
        'content-type',
        'content-length',
        'last-modified',
        'etag',
    ]

    # Extra headers forwarded for audio/video/image/font responses
    MEDIA_HEADERS = [
        'cache-control',
        'accept-ranges',
        'content-range',
    ]


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    PROXY_BASE_URL = 'http://proxy.test'
    RETRY_DELAY = 0
    MESSAGE_ORIGINS = []


# Select configuration based on environment
config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig,
}


def get_config():
    env = os.environ.get('RELAY_ENV', 'default')
    return config_map.get(env, ProductionConfig)()
