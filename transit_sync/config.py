"""Configuration schema and loader for the sync layer."""
from __future__ import annotations

import dataclasses
import logging
import os
from typing import Any

import voluptuous as vol
from dotenv import load_dotenv

from .const import (
    BATCH_DELAY_MS,
    CACHE_CAPACITY,
    CACHE_TTL_MS,
    DOMAIN,
    OFFLINE_QUEUE_CAPACITY,
    PREFETCH_CAPACITY,
    PREFETCH_TOP_N,
    PREFETCH_TTL_MS,
    REQUEST_TIMEOUT,
    RETRY_BASE_DELAY_MS,
)
from .errors import ConfigError

_LOGGER = logging.getLogger(__name__)

ENV_DATABASE_URL = "TRANSIT_SYNC_DATABASE_URL"
ENV_AUTH_TOKEN = "TRANSIT_SYNC_AUTH_TOKEN"

positive_int = vol.All(vol.Coerce(int), vol.Range(min=1))
non_negative_int = vol.All(vol.Coerce(int), vol.Range(min=0))
optional_string = vol.Any(None, vol.All(str, vol.Length(min=1)))
url_string = vol.Any(None, vol.All(str, vol.Match(r"^https?://")))
log_level = vol.Any(None, vol.All(str, vol.Upper, vol.In(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional("cache_capacity", default=CACHE_CAPACITY): positive_int,
        vol.Optional("cache_ttl_ms", default=CACHE_TTL_MS): non_negative_int,
        vol.Optional("offline_queue_capacity", default=OFFLINE_QUEUE_CAPACITY): positive_int,
        vol.Optional("batch_delay_ms", default=BATCH_DELAY_MS): non_negative_int,
        vol.Optional("prefetch_capacity", default=PREFETCH_CAPACITY): positive_int,
        vol.Optional("prefetch_ttl_ms", default=PREFETCH_TTL_MS): non_negative_int,
        vol.Optional("prefetch_top_n", default=PREFETCH_TOP_N): positive_int,
        vol.Optional("retry_base_delay_ms", default=RETRY_BASE_DELAY_MS): non_negative_int,
        vol.Optional("database_url", default=None): url_string,
        vol.Optional("auth_token", default=None): optional_string,
        vol.Optional("request_timeout", default=REQUEST_TIMEOUT): positive_int,
        vol.Optional("push_updates", default=False): vol.Boolean(),
        vol.Optional("log_level", default=None): log_level,
    }
)


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Validated configuration knobs."""

    cache_capacity: int = CACHE_CAPACITY
    cache_ttl_ms: int = CACHE_TTL_MS
    offline_queue_capacity: int = OFFLINE_QUEUE_CAPACITY
    batch_delay_ms: int = BATCH_DELAY_MS
    prefetch_capacity: int = PREFETCH_CAPACITY
    prefetch_ttl_ms: int = PREFETCH_TTL_MS
    prefetch_top_n: int = PREFETCH_TOP_N
    retry_base_delay_ms: int = RETRY_BASE_DELAY_MS
    database_url: str | None = None
    auth_token: str | None = None
    request_timeout: int = REQUEST_TIMEOUT
    push_updates: bool = False
    log_level: str | None = None


def validate_config(data: dict[str, Any]) -> SyncConfig:
    """Validate a mapping against CONFIG_SCHEMA."""
    try:
        validated = CONFIG_SCHEMA(dict(data))
    except vol.MultipleInvalid as exc:
        key = ".".join(str(p) for p in exc.path) or "config"
        raise ConfigError(f"Invalid value for '{key}': {exc.msg}") from exc
    return SyncConfig(**validated)


def load_config(overrides: dict[str, Any] | None = None, env_file: str | None = None) -> SyncConfig:
    """
    Build the configuration from the environment and explicit overrides.

    The database URL and token come from TRANSIT_SYNC_DATABASE_URL and
    TRANSIT_SYNC_AUTH_TOKEN (a .env file is honoured); overrides win.
    """
    load_dotenv(env_file)
    data: dict[str, Any] = {}
    database_url = os.environ.get(ENV_DATABASE_URL)
    if database_url:
        data["database_url"] = database_url
    auth_token = os.environ.get(ENV_AUTH_TOKEN)
    if auth_token:
        data["auth_token"] = auth_token
    if overrides:
        data.update(overrides)

    config = validate_config(data)
    if config.log_level:
        logging.getLogger(DOMAIN).setLevel(config.log_level)
    _LOGGER.debug(
        "Configuration loaded (database configured: %s)", config.database_url is not None
    )
    return config
