"""
Process-wide configuration, read once from the environment (and .env).
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from .providers.base import ProxyCredential

PREFIX = "DRIFTWOOD_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(PREFIX + name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{PREFIX}{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{PREFIX}{name} must be positive, got {raw!r}")
    return value


def _bool(name: str, default: bool = False) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _list(name: str) -> tuple[str, ...]:
    raw = _env(name, "")
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    fetch_timeout: float = 10.0
    provider_timeout: float = 20.0
    request_deadline: float = 45.0
    provider_order: tuple[str, ...] = ()
    race_providers: bool = False
    cache_ttl: float = 0.0
    gateway: Optional[ProxyCredential] = None
    blocked_hosts: tuple[str, ...] = ()
    key_blocked_hosts: tuple[str, ...] = ()
    block_markers: tuple[str, ...] = ("cf-error-code", "access denied", "error 1020")
    key_url_template: Optional[str] = None
    decrypt_service: Optional[str] = None
    decrypt_api_key: Optional[str] = None
    browser_fallback: bool = False
    verify_manifests: bool = True
    log_level: str = "INFO"
    provider_bases: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        gateway = None
        endpoint, key = _env("GATEWAY_URL"), _env("GATEWAY_KEY")
        if endpoint and key:
            gateway = ProxyCredential(endpoint=endpoint.rstrip("/"), auth_key=key)

        # DRIFTWOOD_<PROVIDER>_BASE overrides a profile's base URL
        bases = {}
        for name, value in os.environ.items():
            if name.startswith(PREFIX) and name.endswith("_BASE") and value.strip():
                provider = name[len(PREFIX):-len("_BASE")].lower()
                bases[provider] = value.strip().rstrip("/")

        cache_raw = _env("CACHE_TTL")
        cache_ttl = float(cache_raw) if cache_raw else 0.0
        if cache_ttl < 0:
            raise ValueError(f"{PREFIX}CACHE_TTL must not be negative")

        markers = _list("BLOCK_MARKERS") or cls.block_markers

        return cls(
            fetch_timeout=_float("FETCH_TIMEOUT", 10.0),
            provider_timeout=_float("PROVIDER_TIMEOUT", 20.0),
            request_deadline=_float("REQUEST_DEADLINE", 45.0),
            provider_order=_list("PROVIDERS"),
            race_providers=_bool("RACE_PROVIDERS"),
            cache_ttl=cache_ttl,
            gateway=gateway,
            blocked_hosts=_list("BLOCKED_HOSTS"),
            key_blocked_hosts=_list("KEY_BLOCKED_HOSTS"),
            block_markers=markers,
            key_url_template=_env("KEY_URL_TEMPLATE"),
            decrypt_service=_env("DECRYPT_SERVICE"),
            decrypt_api_key=_env("DECRYPT_API_KEY"),
            browser_fallback=_bool("BROWSER_FALLBACK"),
            verify_manifests=_bool("VERIFY_MANIFESTS", True),
            log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
            provider_bases=bases,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
