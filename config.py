"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.

There is no module-level instance: call load_settings() once at startup and
pass the result to the controller.
"""
from __future__ import annotations

from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from ca.messages import normalize_domain

CA_DIRECTORY_PRESETS = {
    "letsencrypt":         "https://acme-v02.api.letsencrypt.org/directory",
    "letsencrypt_staging": "https://acme-staging-v02.api.letsencrypt.org/directory",
}


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings ≥2.7 calls json.loads() on complex-typed fields
    (e.g. List[str]) before field_validators run.  A plain comma-separated
    value like ``rover.example.com,cam.example.com`` is not valid JSON and
    raises SettingsError before the parse_domains validator can handle it.
    This mixin catches that ValueError and returns the raw string so the
    field_validator receives it and can split on commas as intended.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Storage ────────────────────────────────────────────────────────────
    WORK_DIRECTORY: str = "./certs"

    # ── Domain management ──────────────────────────────────────────────────
    # Ordered; the first entry is the primary domain (CN, file names, A/AAAA)
    MANAGED_DOMAINS: List[str] = []
    RENEWAL_THRESHOLD_DAYS: int = 30

    # ── DNS (Google Cloud DNS) ─────────────────────────────────────────────
    DNS_ZONE: str = ""
    GOOGLE_PROJECT_ID: str = ""                # empty = take it from the credentials
    GOOGLE_APPLICATION_CREDENTIALS: str = ""   # empty = application default credentials
    CHALLENGE_RECORD_TTL: int = 60
    ADDRESS_RECORD_TTL: int = 60
    DNS_POLL_INTERVAL_SECONDS: float = 0.5

    # ── CA Provider ────────────────────────────────────────────────────────
    CA_PROVIDER: Literal["letsencrypt", "letsencrypt_staging", "custom"] = "letsencrypt"
    # Only consulted when CA_PROVIDER="custom"
    ACME_DIRECTORY_URL: str = ""
    ACME_CONTACT_EMAIL: str = ""
    ACME_POLL_INTERVAL_SECONDS: float = 2.0
    # 0 = let the CA choose the validity period
    CERT_VALIDITY_DAYS: int = 0

    # ── ACME TLS (for testing against Pebble / self-signed CAs) ───────────
    ACME_CA_BUNDLE: str = ""       # Path to CA cert bundle; empty = system default
    ACME_INSECURE: bool = False    # Skip TLS verification (never use in production)

    # ── Cancellation ───────────────────────────────────────────────────────
    # Upper bound on one refresh or address update; 0 = no deadline
    REFRESH_TIMEOUT_SECONDS: float = 0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("MANAGED_DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v: object) -> List[str]:
        """Accept comma-separated string or list; names are lowercased without a trailing dot."""
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            names = [d for d in v if not isinstance(d, str) or d.strip()]
            return [normalize_domain(d) if isinstance(d, str) else d for d in names]
        return v  # type: ignore[return-value]

    @field_validator("MANAGED_DOMAINS")
    @classmethod
    def unique_domains(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError("MANAGED_DOMAINS must not contain duplicates")
        return v

    @field_validator("CHALLENGE_RECORD_TTL", "ADDRESS_RECORD_TTL")
    @classmethod
    def positive_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("record TTLs must be positive")
        return v

    @field_validator("DNS_POLL_INTERVAL_SECONDS", "ACME_POLL_INTERVAL_SECONDS")
    @classmethod
    def positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("poll intervals must be positive")
        return v

    @field_validator("RENEWAL_THRESHOLD_DAYS", "CERT_VALIDITY_DAYS", "REFRESH_TIMEOUT_SECONDS")
    @classmethod
    def not_negative(cls, v):
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @model_validator(mode="after")
    def resolve_acme_directory(self) -> "Settings":
        if self.CA_PROVIDER in CA_DIRECTORY_PRESETS:
            self.ACME_DIRECTORY_URL = CA_DIRECTORY_PRESETS[self.CA_PROVIDER]
        elif not self.ACME_DIRECTORY_URL:
            raise ValueError("ACME_DIRECTORY_URL must be set when CA_PROVIDER='custom'")
        return self


def load_settings(**overrides) -> Settings:
    """Build Settings from the environment / .env, with keyword overrides taking precedence."""
    return Settings(**overrides)
