"""App settings.

Flask loads this module on startup via ``app.config.from_pyfile(...)``.
Non-Flask code reads the same values through ``config.get_setting``, which lets
environment variables override the defaults below.
"""

# Single source of truth for default configuration.
SETTINGS: dict[str, object] = {
    # Flask
    "SECRET_KEY": "dev-not-secret",
    # Feature flags
    "ENABLE_ADMIN": True,
    # Logging
    "LOG_LEVEL": "INFO",
    # Registry dump (pg_dump text, gzip-compressed)
    "DUMP_URL": "https://s3.eu-central-1.amazonaws.com/ekosystem-slovensko-digital-dumps/rpo.sql.gz",
    "DUMP_MAX_REDIRECTS": 5,
    "DUMP_DOWNLOAD_TIMEOUT": 60.0,
    "DUMP_WORK_DIR": "/tmp",
    # Import pipeline
    "IMPORT_BATCH_SIZE": 5000,
    # A crashed import leaves its lock row behind; after this long it is taken over.
    "IMPORT_LOCK_STALE_SECONDS": 6 * 60 * 60,
    "IDENTIFIER_WIDTH": 8,
    "COMPANY_COUNTRY": "Slovensko",
    # Search
    "SIMILARITY_THRESHOLD": 0.3,
    "SEARCH_DEFAULT_LIMIT": 20,
    "SEARCH_MAX_LIMIT": 50,
    "QUERY_MIN_LENGTH": 2,
    "QUERY_MAX_LENGTH": 100,
    # Downstream registry lookups
    "RUZ_API_BASE": "https://www.registeruz.sk/cruz-public/api",
    "RPO_API_BASE": "https://api.statistics.sk/rpo/v1",
    "LOOKUP_CACHE_CAPACITY": 10_000,
    "LOOKUP_CACHE_TTL_SECONDS": 24 * 60 * 60,
    "LOOKUP_TIMEOUT": 10.0,
    # Both downstream registries reject anonymous clients now and then.
    "REGISTRY_USER_AGENT": "company_registry/0.1 (contact: unset)",
}

# Optional convenience exports for Flask's from_pyfile().
SECRET_KEY = SETTINGS["SECRET_KEY"]
ENABLE_ADMIN = SETTINGS["ENABLE_ADMIN"]
LOG_LEVEL = SETTINGS["LOG_LEVEL"]
