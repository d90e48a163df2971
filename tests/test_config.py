"""Tests for configuration."""


class TestSettings:
    """Tests for Settings class."""

    def test_default_settings(self, monkeypatch, tmp_path):
        """Test default settings values."""
        # Clear any existing env vars
        for name in ("DATABASE_URL", "ANTHROPIC_API_KEY", "META_APP_SECRET", "WEBHOOK_VERIFY_TOKEN"):
            monkeypatch.delenv(name, raising=False)

        # Change to temp directory to avoid reading .env
        monkeypatch.chdir(tmp_path)

        from dmpilot.config import Settings
        settings = Settings(_env_file=None)

        assert settings.database_url == "sqlite:///dmpilot.db"
        assert settings.anthropic_api_key is None
        assert settings.meta_app_secret is None
        assert settings.worker_pool_size == 8
        assert settings.idempotency_horizon_days == 7
        assert settings.dispatch_max_attempts == 5
        assert settings.log_level == "INFO"

    def test_settings_from_env(self, monkeypatch, tmp_path):
        """Test settings loaded from environment variables."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/test")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key_123")
        monkeypatch.setenv("META_APP_SECRET", "secret_456")
        monkeypatch.setenv("WEBHOOK_VERIFY_TOKEN", "verify_789")
        monkeypatch.setenv("WORKER_POOL_SIZE", "16")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.chdir(tmp_path)

        from dmpilot.config import Settings
        settings = Settings(_env_file=None)

        assert settings.database_url == "postgresql://localhost/test"
        assert settings.anthropic_api_key == "test_key_123"
        assert settings.meta_app_secret == "secret_456"
        assert settings.webhook_verify_token == "verify_789"
        assert settings.worker_pool_size == 16
        assert settings.log_level == "DEBUG"

    def test_is_anthropic_configured(self, monkeypatch, tmp_path):
        """Test is_anthropic_configured property."""
        monkeypatch.chdir(tmp_path)

        from dmpilot.config import Settings

        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        settings = Settings(_env_file=None)
        assert settings.is_anthropic_configured is False

        monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
        settings = Settings(_env_file=None)
        assert settings.is_anthropic_configured is True

    def test_is_signature_check_enabled(self, monkeypatch, tmp_path):
        """Test webhook signatures are only checked with an app secret."""
        monkeypatch.chdir(tmp_path)

        from dmpilot.config import Settings

        monkeypatch.delenv("META_APP_SECRET", raising=False)
        assert Settings(_env_file=None).is_signature_check_enabled is False

        monkeypatch.setenv("META_APP_SECRET", "secret")
        assert Settings(_env_file=None).is_signature_check_enabled is True

    def test_get_settings_cached(self, monkeypatch, tmp_path):
        """Test that get_settings returns cached instance."""
        monkeypatch.setenv("DATABASE_URL", "sqlite:///test.db")
        monkeypatch.chdir(tmp_path)

        from dmpilot.config import get_settings
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2
        get_settings.cache_clear()
