"""
Configuration — immutable settings snapshots.

Settings are read once from the environment into a frozen model. Gateway
credentials may be overridden by the `payment_settings` row; the override
produces a NEW snapshot per request, nothing is cached globally:

    settings = Settings.from_env()
    gateway = await resolve_gateway_settings(session_factory, settings)
"""

import os
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease.db import PaymentSettingsTable

ENV_PREFIX = "TRACKLEASE_"


class ConfigurationError(Exception):
    """Settings cannot produce a safe service graph."""


# ═══════════════════════════════════════════════════════════════════════════════
# Sections
# ═══════════════════════════════════════════════════════════════════════════════

class GatewaySettings(BaseModel):
    """
    PayPal credentials and checkout presentation.

    backend="memory" opts into the in-process gateway for local runs; it
    is never chosen implicitly.
    """

    model_config = ConfigDict(frozen=True)

    backend: Literal["paypal", "memory"] = "paypal"
    mode: Literal["sandbox", "live"] = "sandbox"
    client_id: str = ""
    client_secret: SecretStr = SecretStr("")
    webhook_id: str = ""
    webhook_secret: SecretStr = SecretStr("")
    brand_name: str = "Beat Store"
    timeout_seconds: float = 20.0

    @property
    def base_url(self) -> str:
        if self.mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret.get_secret_value())


class StorageSettings(BaseModel):
    """Blob storage backend."""

    model_config = ConfigDict(frozen=True)

    backend: Literal["memory", "supabase"] = "memory"
    url: str = ""
    service_key: SecretStr = SecretStr("")
    signing_secret: SecretStr = SecretStr("local-signing-secret")


class NotificationSettings(BaseModel):
    """Where order confirmations go once licenses are ready."""

    model_config = ConfigDict(frozen=True)

    backend: Literal["none", "memory", "http"] = "none"
    url: str = ""
    api_key: SecretStr = SecretStr("")
    site_url: str = "http://localhost:8000"
    timeout_seconds: float = 10.0


class Settings(BaseModel):
    """Process-wide settings snapshot."""

    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite+aiosqlite:///tracklease.db"
    currency: str = "USD"
    download_window_days: int = Field(default=7, ge=1)
    signed_url_ttl_seconds: int = Field(default=900, ge=1)
    entitlement_concurrency: int = Field(default=4, ge=1)
    webhook_replay_interval_seconds: float = Field(default=30.0, ge=0)
    webhook_replay_max_interval_seconds: float = Field(default=600.0, gt=0)
    licensor_name: str = "Producer"
    log_level: str = "INFO"
    json_logs: bool = True
    gateway: GatewaySettings = GatewaySettings()
    storage: StorageSettings = StorageSettings()
    notifications: NotificationSettings = NotificationSettings()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """
        Build settings from TRACKLEASE_* variables.

        Nested sections use a double underscore:
        TRACKLEASE_GATEWAY__CLIENT_ID, TRACKLEASE_STORAGE__BACKEND.
        A replay interval of 0 disables background webhook replay.
        """
        env = os.environ if environ is None else environ
        top: dict[str, object] = {}
        sections: dict[str, dict[str, object]] = {"gateway": {}, "storage": {}, "notifications": {}}

        for raw_key, value in env.items():
            if not raw_key.startswith(ENV_PREFIX):
                continue
            key = raw_key[len(ENV_PREFIX):].lower()
            section, sep, field = key.partition("__")
            if sep and section in sections:
                sections[section][field] = value
            elif not sep:
                top[key] = value

        return cls.model_validate({
            **top,
            "gateway": GatewaySettings.model_validate(sections["gateway"]),
            "storage": StorageSettings.model_validate(sections["storage"]),
            "notifications": NotificationSettings.model_validate(sections["notifications"]),
        })


# ═══════════════════════════════════════════════════════════════════════════════
# Database override
# ═══════════════════════════════════════════════════════════════════════════════

async def resolve_gateway_settings(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> GatewaySettings:
    """Overlay the stored payment settings row (non-empty fields win)."""
    async with session_factory() as session:
        row = (
            await session.execute(select(PaymentSettingsTable).limit(1))
        ).scalar_one_or_none()

    if row is None:
        return settings.gateway

    overrides: dict[str, object] = {}
    if row.mode in ("sandbox", "live"):
        overrides["mode"] = row.mode
    if row.client_id:
        overrides["client_id"] = row.client_id
    if row.client_secret:
        overrides["client_secret"] = SecretStr(row.client_secret)
    if row.webhook_id:
        overrides["webhook_id"] = row.webhook_id

    return settings.gateway.model_copy(update=overrides)


__all__ = (
    "ConfigurationError",
    "GatewaySettings",
    "StorageSettings",
    "NotificationSettings",
    "Settings",
    "resolve_gateway_settings",
)
