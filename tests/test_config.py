import pytest
from pydantic import ValidationError

from tracklease.config import Settings, resolve_gateway_settings
from tracklease.db import PaymentSettingsTable


class TestFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.currency == "USD"
        assert settings.download_window_days == 7
        assert settings.signed_url_ttl_seconds == 900
        assert settings.gateway.backend == "paypal"
        assert settings.gateway.mode == "sandbox"
        assert not settings.gateway.configured
        assert settings.storage.backend == "memory"
        assert settings.notifications.backend == "none"
        assert settings.webhook_replay_interval_seconds == 30

    def test_nested_sections(self):
        settings = Settings.from_env({
            "TRACKLEASE_CURRENCY": "EUR",
            "TRACKLEASE_DOWNLOAD_WINDOW_DAYS": "14",
            "TRACKLEASE_JSON_LOGS": "false",
            "TRACKLEASE_GATEWAY__MODE": "live",
            "TRACKLEASE_GATEWAY__CLIENT_ID": "abc",
            "TRACKLEASE_GATEWAY__CLIENT_SECRET": "shh",
            "TRACKLEASE_STORAGE__BACKEND": "supabase",
            "TRACKLEASE_STORAGE__URL": "https://project.supabase.co",
            "TRACKLEASE_NOTIFICATIONS__BACKEND": "http",
            "TRACKLEASE_NOTIFICATIONS__URL": "https://mail.example.com/send",
            "TRACKLEASE_WEBHOOK_REPLAY_INTERVAL_SECONDS": "0",
            "UNRELATED": "ignored",
        })

        assert settings.currency == "EUR"
        assert settings.download_window_days == 14
        assert settings.json_logs is False
        assert settings.gateway.base_url == "https://api-m.paypal.com"
        assert settings.gateway.configured
        assert settings.gateway.client_secret.get_secret_value() == "shh"
        assert "shh" not in repr(settings)
        assert settings.storage.backend == "supabase"
        assert settings.notifications.url == "https://mail.example.com/send"
        assert settings.webhook_replay_interval_seconds == 0

    def test_invalid_values_are_rejected(self):
        with pytest.raises(ValidationError):
            Settings.from_env({"TRACKLEASE_DOWNLOAD_WINDOW_DAYS": "0"})
        with pytest.raises(ValidationError):
            Settings.from_env({"TRACKLEASE_GATEWAY__MODE": "staging"})
        with pytest.raises(ValidationError):
            Settings.from_env({"TRACKLEASE_GATEWAY__BACKEND": "stripe"})

    def test_settings_are_frozen(self):
        settings = Settings.from_env({})

        with pytest.raises(ValidationError):
            settings.currency = "EUR"  # type: ignore[misc]


class TestResolveGatewaySettings:
    async def test_without_override(self, sessions):
        settings = Settings.from_env({"TRACKLEASE_GATEWAY__CLIENT_ID": "env-id"})

        resolved = await resolve_gateway_settings(sessions, settings)

        assert resolved == settings.gateway

    async def test_stored_row_overlays_env(self, sessions):
        settings = Settings.from_env({
            "TRACKLEASE_GATEWAY__CLIENT_ID": "env-id",
            "TRACKLEASE_GATEWAY__WEBHOOK_ID": "WH-ENV",
        })
        async with sessions() as session, session.begin():
            session.add(PaymentSettingsTable(id=1, mode="live", client_id="db-id", client_secret="db-secret"))

        resolved = await resolve_gateway_settings(sessions, settings)

        assert resolved.mode == "live"
        assert resolved.client_id == "db-id"
        assert resolved.client_secret.get_secret_value() == "db-secret"
        assert resolved.webhook_id == "WH-ENV"
        assert settings.gateway.client_id == "env-id"
