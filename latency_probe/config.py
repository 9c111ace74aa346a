"""
Configuration Management Module

Configures probe parameters via environment variables or .env file.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Probe Configuration Class

    All configuration items can be overridden by environment variables, with names matching fields (uppercase).
    """

    # Application Config
    DEBUG: bool = False

    # HTTP Client Config
    # Request timeout (seconds)
    HTTP_TIMEOUT: int = 30
    # Offer HTTP/2 via ALPN on encrypted connections (requires the "h2" package)
    HTTP2: bool = False

    # Tracing Config
    # Resolve host names inside the transport so DNS lookup is timed separately from TCP connect.
    # When disabled, name resolution is folded into the Connect phase and DNSLookup stays zero.
    TRACE_RESOLVE_DNS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get probe configuration (Singleton)

    Uses lru_cache to ensure configuration is loaded only once.

    Returns:
        Settings: Probe configuration instance
    """
    return Settings()
