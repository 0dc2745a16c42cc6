import os
from dotenv import load_dotenv

from mindshare.constants import CacheConstants

load_dotenv()

class Config:
    """Tracker configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///mindshare.db')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'

    # Upstream settings
    DIRECT_URL = os.getenv('DIRECT_URL', 'https://api.kaito.ai/api/v1/community_mindshare')
    TICKER = os.getenv('TICKER', 'THEORIQ')
    API_KEY = os.getenv('API_KEY', '')
    API_KEY_HEADER = os.getenv('API_KEY_HEADER', 'x-api-key')
    # Comma-separated "kind|url" pairs, tried in order after the direct source
    FALLBACK_SOURCES = os.getenv(
        'FALLBACK_SOURCES',
        'path|https://theoriq-proxy.vercel.app/api/theoriq,'
        'passthrough|https://api.allorigins.win/get?url=,'
        'passthrough|https://corsproxy.io/?'
    )
    PROFILE_URL_BASE = os.getenv('PROFILE_URL_BASE', 'https://twitter.com/')

    # Fetch settings
    CACHE_TTL_SECONDS = int(os.getenv('CACHE_TTL_SECONDS', CacheConstants.DEFAULT_CACHE_TTL))
    FETCH_TIMEOUT_SECONDS = float(os.getenv('FETCH_TIMEOUT_SECONDS', 5))
    DIAGNOSTIC_TIMEOUT_SECONDS = float(os.getenv('DIAGNOSTIC_TIMEOUT_SECONDS', 15))

    # Collection settings
    COLLECTION_WINDOW = os.getenv('COLLECTION_WINDOW', '7d')
    COLLECTION_LIMIT = int(os.getenv('COLLECTION_LIMIT', 250))
    RETENTION_WEEKS = int(os.getenv('RETENTION_WEEKS', 12))

    # Schedule settings (weekday: Monday=0 ... Sunday=6)
    COLLECTION_WEEKDAY = int(os.getenv('COLLECTION_WEEKDAY', 2))
    COLLECTION_HOUR = int(os.getenv('COLLECTION_HOUR', 10))
    CLEANUP_HOUR = int(os.getenv('CLEANUP_HOUR', 2))
    SCHEDULE_TIMEZONE = os.getenv('SCHEDULE_TIMEZONE', 'America/New_York')

    @classmethod
    def fallback_sources(cls):
        """Get ordered list of (kind, url) fallback sources"""
        sources = []
        for item in cls.FALLBACK_SOURCES.split(','):
            item = item.strip()
            if not item:
                continue
            kind, sep, url = item.partition('|')
            if not sep or kind.strip() not in ('path', 'passthrough') or not url.strip():
                raise ValueError(
                    "FALLBACK_SOURCES entries must look like 'path|<url>' or 'passthrough|<url>'"
                )
            sources.append((kind.strip(), url.strip()))
        return sources

    @classmethod
    def validate(cls):
        """Validate that configuration values are usable"""
        import pytz

        if cls.RETENTION_WEEKS < 1:
            raise ValueError("RETENTION_WEEKS must be at least 1")
        if cls.CACHE_TTL_SECONDS < 0:
            raise ValueError("CACHE_TTL_SECONDS must not be negative")
        if cls.FETCH_TIMEOUT_SECONDS <= 0 or cls.DIAGNOSTIC_TIMEOUT_SECONDS <= 0:
            raise ValueError("Fetch timeouts must be positive")
        if not 0 <= cls.COLLECTION_WEEKDAY <= 6:
            raise ValueError("COLLECTION_WEEKDAY must be between 0 (Monday) and 6 (Sunday)")
        if not 0 <= cls.COLLECTION_HOUR <= 23 or not 0 <= cls.CLEANUP_HOUR <= 23:
            raise ValueError("COLLECTION_HOUR and CLEANUP_HOUR must be between 0 and 23")
        if not 1 <= cls.COLLECTION_LIMIT <= 250:
            raise ValueError("COLLECTION_LIMIT must be between 1 and 250")
        try:
            pytz.timezone(cls.SCHEDULE_TIMEZONE)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown SCHEDULE_TIMEZONE: {cls.SCHEDULE_TIMEZONE}")
        cls.fallback_sources()
